"""Tests for environment-driven settings."""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config
from gedcom_tree import OPTION_DEFAULT_CHARSET, OPTION_NL_AFTER_NOTE, OPTION_TOLERATE_WHITESPACE


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GEDCOM_CHARSET", "GEDCOM_LEADING_WHITESPACE", "GEDCOM_NOTE_CONT_INSERT_NL", "GEDCOM_MAX_UPLOAD_BYTES"):
        monkeypatch.delenv(name, raising=False)
    config.reset_settings()
    yield
    config.reset_settings()


class TestLoadOptions:

    def test_defaults(self):
        assert config.load_options() == {}

    def test_all_options(self, monkeypatch):
        monkeypatch.setenv("GEDCOM_CHARSET", "ansel")
        monkeypatch.setenv("GEDCOM_LEADING_WHITESPACE", "true")
        monkeypatch.setenv("GEDCOM_NOTE_CONT_INSERT_NL", "1")
        assert config.load_options() == {
            OPTION_DEFAULT_CHARSET: "ANSEL",
            OPTION_TOLERATE_WHITESPACE: "true",
            OPTION_NL_AFTER_NOTE: "true",
        }

    def test_unsupported_charset_ignored(self, monkeypatch):
        monkeypatch.setenv("GEDCOM_CHARSET", "EBCDIC")
        assert config.load_options() == {}

    def test_false_flag(self, monkeypatch):
        monkeypatch.setenv("GEDCOM_LEADING_WHITESPACE", "no")
        assert config.load_options() == {}


class TestSettings:

    def test_cached(self):
        assert config.get_settings() is config.get_settings()

    def test_default_upload_limit(self):
        assert config.get_settings().max_upload_bytes == config.DEFAULT_MAX_UPLOAD_BYTES

    def test_upload_limit_from_env(self, monkeypatch):
        monkeypatch.setenv("GEDCOM_MAX_UPLOAD_BYTES", "1024")
        assert config.get_settings().max_upload_bytes == 1024

    def test_invalid_upload_limit(self, monkeypatch):
        monkeypatch.setenv("GEDCOM_MAX_UPLOAD_BYTES", "lots")
        assert config.get_settings().max_upload_bytes == config.DEFAULT_MAX_UPLOAD_BYTES

    def test_reset_rereads_environment(self, monkeypatch):
        assert config.get_settings().options == {}
        monkeypatch.setenv("GEDCOM_CHARSET", "ASCII")
        assert config.get_settings().options == {}
        config.reset_settings()
        assert config.get_settings().options == {OPTION_DEFAULT_CHARSET: "ASCII"}
