"""Tests for word service."""
from pathlib import Path

import pytest
from faker import Faker
from sqlalchemy.orm import Session

from lexibot.models.models import User, Word
from lexibot.services.word_service import DEFAULT_CUSTOM_LIST, WordService, parse_word_lines

fake = Faker()

CSV_TEXT = """Word,Meaning_CN,Phonetic,Example,Unit
apple,苹果,/ˈæpəl/,An apple a day.,1
,空,,,
bank,银行,,,2
"""


@pytest.fixture
def word_service(db: Session) -> WordService:
    """Create a word service instance."""
    return WordService(db)


def test_create_wordlist(word_service: WordService, user: User) -> None:
    builtin = word_service.create_wordlist("  CET-4 ")
    custom = word_service.create_wordlist("Mine", user_id=user.id)

    assert builtin.name == "CET-4"
    assert builtin.is_builtin
    assert not custom.is_builtin
    assert [wl.id for wl in word_service.get_wordlists(user.id)] == [builtin.id, custom.id]


def test_create_wordlist_requires_name(word_service: WordService) -> None:
    with pytest.raises(ValueError):
        word_service.create_wordlist("   ")


def test_import_csv_text(db: Session, word_service: WordService, user: User) -> None:
    """Rows without a word are skipped and headers are case-insensitive."""
    wordlist = word_service.import_csv_text(CSV_TEXT, "mine", user_id=user.id)

    words = db.query(Word).filter(Word.wordlist_id == wordlist.id).order_by(Word.id).all()
    assert [w.word for w in words] == ["apple", "bank"]
    assert words[0].meaning_cn == "苹果"
    assert words[0].phonetic == "/ˈæpəl/"
    assert words[0].example == "An apple a day."
    assert words[0].unit == "1"
    assert words[1].example is None
    assert all(w.user_id == user.id for w in words)


def test_import_csv_requires_word_column(word_service: WordService) -> None:
    with pytest.raises(ValueError):
        word_service.import_csv_text("term,meaning\napple,苹果\n", "bad")

    assert word_service.get_wordlist_by_name("bad") is None


def test_load_builtin_dictionaries_once(word_service: WordService, tmp_path: Path) -> None:
    (tmp_path / "fruits.csv").write_text("word,meaning_cn\napple,苹果\npear,梨\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    assert word_service.load_builtin_dictionaries(tmp_path) == 1
    assert word_service.load_builtin_dictionaries(tmp_path) == 0
    assert word_service.get_word_count() == 2
    assert word_service.get_wordlist_by_name("fruits").is_builtin


def test_load_builtin_dictionaries_missing_directory(word_service: WordService, tmp_path: Path) -> None:
    assert word_service.load_builtin_dictionaries(tmp_path / "missing") == 0


def test_word_count_and_search(word_service: WordService, user: User) -> None:
    word_service.import_csv_text("word,meaning_cn\napple,苹果\npineapple,菠萝\n", "fruits")
    word_service.import_csv_text("word,meaning_cn\nbank,银行\n", "mine", user_id=user.id)

    assert word_service.get_word_count() == 2
    assert word_service.get_word_count(user.id) == 3
    assert [w.word for w in word_service.search_words("apple", user.id)] == ["apple", "pineapple"]
    assert [w.word for w in word_service.search_words("银行", user.id)] == ["bank"]


def test_parse_word_lines() -> None:
    rows = parse_word_lines(" apple , 苹果\n\n  ,orphan\npear\nice cream, 冰淇淋, 雪糕")

    assert rows == [
        {"word": "apple", "meaning_cn": "苹果"},
        {"word": "pear", "meaning_cn": ""},
        {"word": "ice cream", "meaning_cn": "冰淇淋, 雪糕"},
    ]


def test_get_or_create_wordlist(word_service: WordService, user: User) -> None:
    first = word_service.get_or_create_wordlist(DEFAULT_CUSTOM_LIST, user.id)
    second = word_service.get_or_create_wordlist(f" {DEFAULT_CUSTOM_LIST} ", user.id)

    assert first.id == second.id
    assert first.user_id == user.id


def test_user_wordlist_excludes_builtin_lists(word_service: WordService, user: User) -> None:
    builtin = word_service.create_wordlist("CET-4")
    own = word_service.create_wordlist("Mine", user_id=user.id)

    assert word_service.get_user_wordlist(builtin.id, user.id) is None
    assert word_service.get_user_wordlist(own.id, user.id).id == own.id


def test_wordlist_sizes(word_service: WordService, user: User) -> None:
    builtin = word_service.create_wordlist("CET-4")
    word_service.add_words(builtin, [{"word": "apple"}, {"word": "pear"}])
    word_service.create_wordlist("Empty", user_id=user.id)

    sizes = [(wordlist.name, size) for wordlist, size in word_service.get_wordlist_sizes(user.id)]

    assert sizes == [("CET-4", 2), ("Empty", 0)]
