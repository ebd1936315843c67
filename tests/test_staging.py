import asyncio
import os
import time

from services.staging import FileStager


def make_stager(tmp_path, ttl_seconds=60):
    return FileStager(directory=str(tmp_path / 'temp'), ttl_seconds=ttl_seconds)


def age_file(path, seconds):
    past = time.time() - seconds
    os.utime(path, (past, past))


def test_staged_bytes_are_returned_while_fresh(tmp_path):
    stager = make_stager(tmp_path)

    path = asyncio.run(stager.stage('http://example.test/a.png', b'payload'))

    assert os.path.basename(path).startswith('staged_')
    assert asyncio.run(stager.lookup('http://example.test/a.png')) == b'payload'


def test_lookup_misses_unknown_and_expired_keys(tmp_path):
    stager = make_stager(tmp_path, ttl_seconds=60)
    assert asyncio.run(stager.lookup('never-staged')) is None

    path = asyncio.run(stager.stage('old', b'stale'))
    age_file(path, 120)
    assert asyncio.run(stager.lookup('old')) is None


def test_path_for_is_stable_per_key(tmp_path):
    stager = make_stager(tmp_path)
    assert stager.path_for('a') == stager.path_for('a')
    assert stager.path_for('a') != stager.path_for('b')
    assert stager.path_for('a', '.png').endswith('.png')


def test_sweep_removes_only_expired_files(tmp_path):
    stager = make_stager(tmp_path, ttl_seconds=3600)
    fresh = asyncio.run(stager.stage('fresh', b'1'))
    stale = asyncio.run(stager.stage('stale', b'2'))
    age_file(stale, 7200)

    assert stager.remove_temporary_files() == 1
    assert os.path.exists(fresh)
    assert not os.path.exists(stale)


def test_sweep_without_directory_is_a_no_op(tmp_path):
    stager = make_stager(tmp_path)
    assert stager.remove_temporary_files() == 0


def test_files_appear_only_once_fully_written(tmp_path, monkeypatch):
    stager = make_stager(tmp_path)
    final_path = stager.path_for('http://example.test/big.png')
    observed = []
    real_replace = os.replace

    def checking_replace(src, dst):
        with open(src, 'rb') as partial:
            observed.append((stager.is_fresh(dst), partial.read()))
        real_replace(src, dst)

    monkeypatch.setattr(os, 'replace', checking_replace)

    path = asyncio.run(stager.stage('http://example.test/big.png', b'x' * 4096))

    assert path == final_path
    assert observed == [(False, b'x' * 4096)]
    assert os.listdir(stager.directory) == [os.path.basename(final_path)]


def test_lookup_of_a_file_swept_mid_read_is_a_miss(tmp_path, monkeypatch):
    stager = make_stager(tmp_path)
    monkeypatch.setattr(stager, 'is_fresh', lambda path, now=None: True)

    assert asyncio.run(stager.lookup('swept')) is None
