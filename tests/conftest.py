"""Shared fixtures."""

import pytest

import builders


@pytest.fixture
def write_file(tmp_path):
    """Write bytes under tmp_path and return the path."""
    def _write(name, data):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path
    return _write


@pytest.fixture
def sample_files():
    return [
        ("a.txt", b"alpha"),
        ("dir/b.bin", b"\x00\x01\x02\x03\x04"),
        ("c.txt", b"gamma gamma"),
    ]


@pytest.fixture
def qnt_red():
    return builders.qnt_solid(3, 3, (255, 0, 0))


@pytest.fixture
def qnt_red_alpha():
    return builders.qnt_solid(4, 2, (255, 0, 0), alpha=128)
