"""Ayah text and reference audio loaded from surah JSON files."""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from hifz.config import settings
from hifz.exceptions import TextNotFoundError
from hifz.models.learning_models import AyahText, WordToken
from hifz.services.collaborators import TextSource


logger = logging.getLogger(__name__)


class JsonTextSource(TextSource):
    """Text source backed by one ``<surah>.json`` file per surah.

    Each file holds ``{"id", "name", "ayahs": [{"number", "text",
    "transliteration", "words"?}]}``. When ``words`` is missing the tokens
    are derived by splitting the text, pairing transliterations only when
    the word counts agree.
    """

    def __init__(self, surahs_dir: Optional[Path] = None, audio_base_url: Optional[str] = None):
        self.surahs_dir = Path(surahs_dir) if surahs_dir else settings.paths.surahs_dir
        self.audio_base_url = (audio_base_url or settings.audio.base_url).rstrip("/")
        self._cache: Dict[int, Optional[Dict[str, Any]]] = {}

    def _load_surah(self, surah: int) -> Optional[Dict[str, Any]]:
        if surah in self._cache:
            return self._cache[surah]

        path = self.surahs_dir / f"{surah}.json"
        data = None
        try:
            with path.open(encoding="utf-8") as f:
                data = json.load(f)
            logger.debug(f"Loaded surah {surah} from {path}")
        except FileNotFoundError:
            logger.warning(f"No text file for surah {surah} at {path}")
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Unreadable text file for surah {surah}: {e}")
        if data is not None and not isinstance(data, dict):
            logger.error(f"Malformed text file for surah {surah}: root is not an object")
            data = None
        self._cache[surah] = data
        return data

    def available_surahs(self) -> List[int]:
        """Surah numbers that have a text file."""
        if not self.surahs_dir.exists():
            return []
        return sorted(int(path.stem) for path in self.surahs_dir.glob("*.json") if path.stem.isdigit())

    def get_surah_name(self, surah: int) -> str:
        data = self._load_surah(surah)
        if not data:
            return f"Surah {surah}"
        return data.get("name_transliterated") or data.get("name") or f"Surah {surah}"

    def get_ayah_count(self, surah: int) -> int:
        data = self._load_surah(surah)
        ayahs = data.get("ayahs") if data else None
        return len(ayahs) if isinstance(ayahs, list) else 0

    def get_ayah(self, surah: int, ayah: int) -> AyahText:
        data = self._load_surah(surah)
        if not data:
            raise TextNotFoundError(surah, ayah)

        ayahs = data.get("ayahs")
        if not isinstance(ayahs, list):
            raise TextNotFoundError(surah, ayah)
        entry = next((item for item in ayahs if isinstance(item, dict) and item.get("number") == ayah), None)
        if not entry or not isinstance(entry.get("text"), str) or not entry["text"].strip():
            raise TextNotFoundError(surah, ayah)

        try:
            return AyahText(
                surah=surah,
                ayah=ayah,
                text=entry["text"],
                transliteration=entry.get("transliteration") or "",
                words=tuple(self._build_tokens(entry)),
            )
        except (KeyError, TypeError, AttributeError) as e:
            logger.error(f"Malformed entry for {surah}:{ayah}: {e!r}")
            raise TextNotFoundError(surah, ayah) from e

    def get_audio_url(self, surah: int, ayah: int) -> Optional[str]:
        if not self.audio_base_url:
            return None
        return f"{self.audio_base_url}/{surah:03d}{ayah:03d}.mp3"

    @staticmethod
    def _build_tokens(entry: Dict[str, Any]) -> List[WordToken]:
        if entry.get("words"):
            return [
                WordToken(
                    text=word["text"],
                    transliteration=word.get("transliteration", ""),
                    position=word.get("position", i + 1),
                )
                for i, word in enumerate(entry["words"])
            ]

        texts = entry["text"].split()
        transliterations = entry.get("transliteration", "").split()
        if len(transliterations) != len(texts):
            transliterations = [""] * len(texts)
        return [
            WordToken(text=text, transliteration=transliteration, position=i + 1)
            for i, (text, transliteration) in enumerate(zip(texts, transliterations))
        ]
