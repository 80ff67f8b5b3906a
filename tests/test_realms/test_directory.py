"""Tests for the multi-key realm lookup."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from wow_osint.models.realm import Realm
from wow_osint.realms.directory import RealmDirectory


@pytest.fixture
def directory(sample_realms) -> RealmDirectory:
    return RealmDirectory(lambda: sample_realms)


class TestFindRealm:
    @pytest.mark.parametrize(
        "query",
        ["3686", 3686, "Twisted Nether", "twisted-nether", "twisted nether", "TWISTED NETHER", "TN"],
    )
    def test_all_forms_resolve(self, directory, query):
        realm = directory.find_realm(query)
        assert realm is not None
        assert realm.id == 3686

    @pytest.mark.parametrize("query", ["Гордунни", "гордунни", "gordunni", "Gordunni", "1602"])
    def test_localized_forms_resolve(self, directory, query):
        assert directory.find_realm(query).slug == "gordunni"

    def test_miss_returns_none(self, directory):
        assert directory.find_realm("Atlantis") is None
        assert directory.find_realm("   ") is None


class TestLoading:
    def test_loader_runs_once(self, sample_realms):
        calls = []

        def loader():
            calls.append(1)
            return sample_realms

        directory = RealmDirectory(loader)
        directory.find_realm("draenor")
        directory.find_realm("gordunni")
        assert directory.size == 3
        assert len(calls) == 1

    def test_concurrent_first_lookups_load_once(self, sample_realms):
        calls = []
        entered, release = threading.Event(), threading.Event()

        def slow_loader():
            calls.append(1)
            entered.set()
            release.wait(timeout=5)
            return sample_realms

        directory = RealmDirectory(slow_loader)
        start = threading.Barrier(8)

        def lookup(query):
            start.wait(timeout=5)
            return directory.find_realm(query)

        queries = ["draenor", "Гордунни", "1096", "TN"] * 2
        with ThreadPoolExecutor(max_workers=8) as executor:
            futures = [executor.submit(lookup, q) for q in queries]
            assert entered.wait(timeout=5)
            time.sleep(0.05)
            release.set()
            found = [future.result(timeout=5) for future in futures]

        assert len(calls) == 1
        assert [realm.id for realm in found] == [1096, 1602, 1096, 3686] * 2

    def test_reload_picks_up_new_realms(self, sample_realms):
        realms = list(sample_realms)
        directory = RealmDirectory(lambda: realms)
        assert directory.find_realm("Kazzak") is None

        realms.append(
            Realm(id=1305, slug="kazzak", name="Kazzak", connected_realm_id=1305, region="eu")
        )
        directory.reload()
        assert directory.find_realm("Kazzak").id == 1305
        assert len(directory.all_realms()) == 4
