"""Unit tests for hashing helpers and atomic writes."""

from __future__ import annotations

from pathlib import Path

from phasegate.core.atomic_io import write_bytes_atomic, write_text_atomic
from phasegate.core.hasher import sha256_hex, sha256_text, short_hash


class TestDigests:
    def test_known_vector(self):
        assert sha256_hex(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_text_is_utf8(self):
        assert sha256_text("é") == sha256_hex("é".encode("utf-8"))

    def test_short_hash_length(self):
        assert len(short_hash(b"abc")) == 16
        assert short_hash(b"abc", 8) == sha256_hex(b"abc")[:8]


class TestAtomicWrites:
    def test_creates_parents(self, tmp_path: Path):
        target = tmp_path / "a" / "b" / "file.txt"
        write_text_atomic(target, "hello")
        assert target.read_text(encoding="utf-8") == "hello"

    def test_overwrite_leaves_no_temp_files(self, tmp_path: Path):
        target = tmp_path / "state.json"
        write_text_atomic(target, '{"v": 1}')
        write_text_atomic(target, '{"v": 2}')
        assert target.read_text(encoding="utf-8") == '{"v": 2}'
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_bytes_are_written_verbatim(self, tmp_path: Path):
        target = tmp_path / "blob.bin"
        write_bytes_atomic(target, b"\x00\xffline\r\n")
        assert target.read_bytes() == b"\x00\xffline\r\n"
