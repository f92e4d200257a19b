"""Service for managing wordlists and words in the catalog."""
import csv
import io
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, TextIO, Tuple, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from lexibot.config import settings
from lexibot.models.models import Word, Wordlist

logger = logging.getLogger(__name__)

WORD_FIELDS = ("meaning_cn", "phonetic", "example", "unit")
DEFAULT_CUSTOM_LIST = "My words"


def parse_word_lines(text: str) -> List[Dict[str, str]]:
    """Rows from lines of the form `word, meaning`; the meaning is optional."""
    rows = []
    for line in text.splitlines():
        word, _, meaning = line.partition(",")
        if not word.strip():
            continue
        rows.append({"word": word.strip(), "meaning_cn": meaning.strip()})
    return rows


class WordService:
    """Service for managing wordlists and their words."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def create_wordlist(self, name: str, user_id: Optional[int] = None) -> Wordlist:
        """Create a wordlist. Lists without a user are built-in and shared."""
        name = name.strip()
        if not name:
            raise ValueError("Wordlist name must not be empty")

        wordlist = Wordlist(name=name, user_id=user_id)
        self.db.add(wordlist)
        self.db.commit()
        self.db.refresh(wordlist)
        return wordlist

    def get_wordlist_by_name(self, name: str, user_id: Optional[int] = None) -> Optional[Wordlist]:
        query = self.db.query(Wordlist).filter(Wordlist.name == name)
        if user_id is None:
            query = query.filter(Wordlist.user_id.is_(None))
        else:
            query = query.filter(Wordlist.user_id == user_id)
        return query.first()

    def get_or_create_wordlist(self, name: str, user_id: int) -> Wordlist:
        """The user's list with this name, created when missing."""
        wordlist = self.get_wordlist_by_name(name.strip(), user_id)
        if wordlist is None:
            wordlist = self.create_wordlist(name, user_id)
            logger.info("Wordlist %s created for user %s", wordlist.name, user_id)
        return wordlist

    def get_user_wordlist(self, wordlist_id: int, user_id: int) -> Optional[Wordlist]:
        """A list the user may add words to. Built-in lists are read-only."""
        return (
            self.db.query(Wordlist)
            .filter(Wordlist.id == wordlist_id, Wordlist.user_id == user_id)
            .first()
        )

    def get_wordlists(self, user_id: int) -> List[Wordlist]:
        """Built-in lists followed by the user's own lists."""
        return (
            self.db.query(Wordlist)
            .filter(or_(Wordlist.user_id.is_(None), Wordlist.user_id == user_id))
            .order_by(Wordlist.user_id.isnot(None), Wordlist.id)
            .all()
        )

    def add_words(self, wordlist: Wordlist, rows: Iterable[Dict[str, str]]) -> List[Word]:
        """Add words to a list. Rows without a word are skipped."""
        words = []
        for row in rows:
            text = (row.get("word") or "").strip()
            if not text:
                continue
            word = Word(
                wordlist_id=wordlist.id,
                user_id=wordlist.user_id,
                word=text,
                **{key: (row.get(key) or "").strip() or None for key in WORD_FIELDS},
            )
            self.db.add(word)
            words.append(word)

        self.db.commit()
        logger.info("Added %d words to wordlist %s", len(words), wordlist.name)
        return words

    def import_csv(
        self,
        source: Union[str, Path, TextIO],
        name: str,
        user_id: Optional[int] = None,
    ) -> Wordlist:
        """Create a wordlist from CSV with a `word` column and optional
        meaning_cn, phonetic, example and unit columns."""
        if isinstance(source, (str, Path)):
            with open(source, newline="", encoding="utf-8-sig") as f:
                rows = list(csv.DictReader(f))
        else:
            rows = list(csv.DictReader(source))

        if rows and "word" not in {key.strip().lower() for key in rows[0] if key}:
            raise ValueError("CSV must contain a 'word' column")

        normalized = [
            {key.strip().lower(): value for key, value in row.items() if key}
            for row in rows
        ]
        wordlist = self.create_wordlist(name, user_id)
        self.add_words(wordlist, normalized)
        return wordlist

    def import_csv_text(self, text: str, name: str, user_id: Optional[int] = None) -> Wordlist:
        """Same as import_csv for CSV content already in memory."""
        return self.import_csv(io.StringIO(text), name, user_id)

    def load_builtin_dictionaries(self, directory: Optional[Path] = None) -> int:
        """Import each CSV in the dictionaries directory as a built-in list, once."""
        directory = Path(directory or settings.paths.dictionaries_dir)
        if not directory.exists():
            return 0

        loaded = 0
        for path in sorted(directory.glob("*.csv")):
            if self.get_wordlist_by_name(path.stem) is not None:
                continue
            self.import_csv(path, path.stem)
            loaded += 1
            logger.info("Loaded built-in dictionary %s", path.name)
        return loaded

    def get_wordlist_sizes(self, user_id: int) -> List[Tuple[Wordlist, int]]:
        """Visible wordlists with their number of words."""
        counts = dict(
            self.db.query(Word.wordlist_id, func.count(Word.id))
            .group_by(Word.wordlist_id)
            .all()
        )
        return [(wordlist, counts.get(wordlist.id, 0)) for wordlist in self.get_wordlists(user_id)]

    def get_word_count(self, user_id: Optional[int] = None) -> int:
        """Count built-in words, plus the user's own words when a user is given."""
        query = self.db.query(Word)
        if user_id is None:
            query = query.filter(Word.user_id.is_(None))
        else:
            query = query.filter(or_(Word.user_id.is_(None), Word.user_id == user_id))
        return query.count()

    def search_words(self, query: str, user_id: int, limit: int = 10) -> List[Word]:
        """Search the user's visible catalog by word or meaning."""
        return (
            self.db.query(Word)
            .filter(or_(Word.user_id.is_(None), Word.user_id == user_id))
            .filter(
                or_(
                    Word.word.ilike(f"%{query}%"),
                    Word.meaning_cn.ilike(f"%{query}%"),
                )
            )
            .order_by(Word.id)
            .limit(limit)
            .all()
        )
