"""Unit tests for file system storage."""

import pytest

from virtuoso.composition.models import Performance, StepResult, StepStatus
from virtuoso.file_storage_manager import FileSystemStorage
from virtuoso.logging_config import LogCapture


@pytest.fixture
def storage(tmp_path):
    return FileSystemStorage(tmp_path / "data")


class TestFileSystemStorage:
    """Test composition and performance stores."""

    @pytest.mark.unit
    def test_layout(self, storage):
        assert (storage.base_path / "compositions").is_dir()
        assert (storage.base_path / "performances").is_dir()

    @pytest.mark.unit
    def test_save_get_delete(self, storage, make_composition):
        composition = make_composition([{"type": "connect", "account_alias": "alice"}], id="comp_1")

        path = storage.compositions.save(composition)

        assert path.name == "comp_1.json"
        assert storage.compositions.get("comp_1") == composition
        assert storage.compositions.delete("comp_1")
        assert not storage.compositions.delete("comp_1")
        assert storage.compositions.get("comp_1") is None

    @pytest.mark.unit
    def test_save_overwrites_by_id(self, storage, make_composition):
        storage.compositions.save(make_composition([{"type": "connect", "account_alias": "alice"}],
                                                   id="comp_1", name="First"))
        storage.compositions.save(make_composition([{"type": "connect", "account_alias": "alice"}],
                                                   id="comp_1", name="Second"))

        loaded = storage.compositions.load_all()

        assert [c.name for c in loaded] == ["Second"]

    @pytest.mark.unit
    def test_load_all_skips_unreadable(self, storage, make_composition):
        storage.compositions.save(make_composition([{"type": "connect", "account_alias": "alice"}], id="comp_ok"))
        (storage.base_path / "compositions" / "comp_bad.json").write_text("{not json")

        with LogCapture("virtuoso") as capture:
            loaded = storage.compositions.load_all()

        assert [c.id for c in loaded] == ["comp_ok"]
        assert any("comp_bad.json" in log["message"] for log in capture.get_logs("ERROR"))

    @pytest.mark.unit
    def test_unsafe_ids_rejected(self, storage):
        with pytest.raises(ValueError, match="Unsafe identifier"):
            storage.compositions.get("../../etc/passwd")

    @pytest.mark.unit
    def test_performances_for(self, storage):
        for index, composition_id in enumerate(["comp_a", "comp_b", "comp_a"]):
            performance = Performance(id=f"perf_{index}", composition_id=composition_id)
            performance.add_step_result(StepResult(step_id="s1", status=StepStatus.PASSED))
            performance.finish(1.0)
            storage.performances.save(performance)

        history = storage.performances_for("comp_a")

        assert [p.id for p in history] == ["perf_0", "perf_2"]
        assert history[0].step_results[0].status == StepStatus.PASSED
