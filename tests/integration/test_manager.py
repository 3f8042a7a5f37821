"""Integration tests for composition management."""

import pytest
import yaml

from virtuoso.composition.manager import CompositionManager
from virtuoso.composition.models import Composition, MatchType, PerformanceStatus
from virtuoso.config_loader import load_config
from virtuoso.interfaces import AlreadyComposing, InvalidComposition
from virtuoso.templates import render_template

ALICE = "alice@localhost"


def _record_ping(manager, name="Ping", tags=None):
    manager.start_recording()
    manager.composer.capture_connect("alice", ALICE)
    manager.composer.capture_send("alice", render_template("iq_ping", id="ping-1", to="localhost"),
                                  {"pingId": "ping-1"})
    manager.composer.add_cue("alice", MatchType.ID, "pingId", timeout_ms=1000)
    return manager.stop_recording(name=name, tags=tags or ["smoke"])


class TestRecordingAndPerforming:
    """Test recording, storage and performance through the manager."""

    @pytest.mark.integration
    def test_record_and_perform(self, manager, loopback):
        loopback.add_responder("urn:xmpp:ping", '<iq type="result" id="ping-1"/>')
        composition = _record_ping(manager)

        performance = manager.perform(composition.id)

        assert performance.status == PerformanceStatus.PASSED
        assert manager.get_composition(composition.id) == composition
        assert [p.id for p in manager.performances_for(composition.id)] == [performance.id]
        assert manager.get_performance(performance.id) == performance

    @pytest.mark.integration
    def test_stop_without_steps_stores_nothing(self, manager):
        manager.start_recording()

        assert manager.stop_recording() is None
        assert manager.list_compositions() == []

    @pytest.mark.integration
    def test_record_more_extends_stored_composition(self, manager):
        composition = _record_ping(manager)

        manager.record_more(composition.id)
        with pytest.raises(AlreadyComposing):
            manager.start_recording()
        manager.composer.capture_disconnect("alice")
        extended = manager.stop_recording()

        assert extended.id == composition.id
        assert len(manager.get_composition(composition.id).steps) == 4
        assert len(manager.list_compositions()) == 1

    @pytest.mark.integration
    def test_record_more_unknown(self, manager):
        with pytest.raises(FileNotFoundError):
            manager.record_more("comp_missing")

    @pytest.mark.integration
    def test_cancel_recording(self, manager):
        manager.start_recording()
        manager.composer.capture_connect("alice", ALICE)
        manager.cancel_recording()

        assert not manager.is_recording()
        assert manager.list_compositions() == []

    @pytest.mark.integration
    def test_perform_invalid_composition(self, manager, make_composition):
        composition = make_composition([{"type": "connect", "account_alias": "carol"}])
        manager.storage.compositions.save(composition)

        with pytest.raises(InvalidComposition):
            manager.perform(composition.id)
        assert manager.performances_for(composition.id) == []

    @pytest.mark.integration
    def test_perform_without_provider(self, tmp_path):
        manager = CompositionManager(tmp_path / "data")
        _record_ping(manager)

        with pytest.raises(RuntimeError, match="No connection provider"):
            manager.perform(manager.list_compositions()[0]["id"])

    @pytest.mark.integration
    def test_perform_with_tags(self, manager, loopback):
        loopback.add_responder("urn:xmpp:ping", '<iq type="result" id="ping-1"/>')
        tagged = _record_ping(manager, name="Tagged", tags=["nightly"])
        _record_ping(manager, name="Other", tags=["smoke"])

        performances = manager.perform_with_tags(["nightly"])

        assert [p.composition_id for p in performances] == [tagged.id]
        assert manager.perform_with_tags(["missing"]) == []

    @pytest.mark.integration
    def test_account_overrides_applied(self, tmp_path, loopback):
        manager = CompositionManager(tmp_path / "data", provider=loopback,
                                     account_overrides={"alice": "alice@staging"})
        loopback.add_responder("urn:xmpp:ping", '<iq type="result" id="ping-1"/>')
        composition = _record_ping(manager)

        manager.perform(composition.id)

        assert loopback.connect_counts["alice@staging"] == 1
        assert loopback.connect_counts[ALICE] == 0

    @pytest.mark.integration
    def test_account_override_from_environment(self, tmp_path, loopback):
        """Test a VIRTUOSO_ACCOUNT_<ALIAS> variable reaches the performance through the loaded config."""
        config = load_config(tmp_path / "missing.yml", environ={
            "VIRTUOSO_DATA_DIR": str(tmp_path / "data"),
            "VIRTUOSO_LOG_DIR": str(tmp_path / "logs"),
            "VIRTUOSO_ACCOUNT_ALICE": "alice@staging",
        })
        manager = CompositionManager.from_config(config, provider=loopback)
        loopback.add_responder("urn:xmpp:ping", '<iq type="result" id="ping-1"/>')
        composition = _record_ping(manager)

        performance = manager.perform(composition.id)

        assert performance.status == PerformanceStatus.PASSED
        assert loopback.connect_counts["alice@staging"] == 1
        assert loopback.connect_counts[ALICE] == 0
        assert (tmp_path / "data" / "performances" / f"{performance.id}.json").exists()


class TestCompositionManagement:
    """Test metadata edits, duplication, import and export."""

    @pytest.mark.integration
    def test_duplicate(self, manager):
        original = _record_ping(manager)

        duplicate_id = manager.duplicate_composition(original.id, "Ping copy")
        duplicate = manager.get_composition(duplicate_id)

        assert duplicate_id != original.id
        assert duplicate.name == "Ping copy"
        assert duplicate.steps == original.steps
        assert manager.duplicate_composition("comp_missing", "x") is None

    @pytest.mark.integration
    def test_update_metadata(self, manager):
        original = _record_ping(manager)

        assert manager.update_composition_metadata(original.id, name="Renamed", tags=["a", "a", "b"],
                                                   steps=[])
        updated = manager.get_composition(original.id)

        assert updated.name == "Renamed"
        assert updated.tags == ["a", "b"]
        assert updated.steps == original.steps
        assert updated.updated >= original.updated
        assert not manager.update_composition_metadata("comp_missing", name="x")

    @pytest.mark.integration
    def test_update_metadata_rejects_invalid(self, manager):
        original = _record_ping(manager)

        assert not manager.update_composition_metadata(original.id, name="   ")
        assert manager.get_composition(original.id).name == "Ping"

    @pytest.mark.integration
    def test_delete(self, manager):
        composition = _record_ping(manager)

        assert manager.delete_composition(composition.id)
        assert manager.get_composition(composition.id) is None
        assert not manager.delete_composition(composition.id)

    @pytest.mark.integration
    @pytest.mark.parametrize("format", ["json", "yaml"])
    def test_export_and_import(self, manager, tmp_path, format):
        composition = _record_ping(manager)
        export_dir = tmp_path / "export"

        exported = manager.export_compositions(export_dir, format=format)

        assert [p.suffix for p in exported] == [f".{format}"]
        if format == "yaml":
            assert yaml.safe_load(exported[0].read_text())["id"] == composition.id

        other = CompositionManager(tmp_path / "other")
        assert other.import_compositions(export_dir) == [composition.id]
        assert other.get_composition(composition.id) == composition

    @pytest.mark.integration
    def test_import_skips_bad_files(self, manager, tmp_path):
        import_dir = tmp_path / "import"
        import_dir.mkdir()
        (import_dir / "broken.json").write_text("{")
        (import_dir / "notes.txt").write_text("ignored")
        Composition(id="comp_ok", steps=[]).save_to_file(import_dir / "comp_ok.json")

        assert manager.import_compositions(import_dir) == ["comp_ok"]

    @pytest.mark.integration
    def test_export_unsupported_format(self, manager, tmp_path):
        with pytest.raises(ValueError, match="Unsupported export format"):
            manager.export_compositions(tmp_path / "out", format="xml")

    @pytest.mark.integration
    def test_success_rates_and_status(self, manager, loopback):
        loopback.add_responder("urn:xmpp:ping", '<iq type="result" id="ping-1"/>', once=True)
        composition = _record_ping(manager)
        manager.perform(composition.id)
        manager.perform(composition.id)

        analysis = manager.analyze_success_rates()
        stats = analysis["composition_stats"][composition.id]

        assert analysis["total_performances"] == 2
        assert analysis["overall_success_rate"] == 50.0
        assert stats["passes"] == 1
        assert stats["failures"] == 1
        assert stats["composition_name"] == "Ping"

        status = manager.get_manager_status()
        assert status["total_compositions"] == 1
        assert status["total_performances"] == 2
        assert status["provider_available"]
        assert not status["recording"]
