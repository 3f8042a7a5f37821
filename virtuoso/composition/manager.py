"""
Composition management system.

This module provides a high-level interface for managing compositions,
including recording, performance, persistence and organization.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from virtuoso.config_models import PerformerConfig, SystemConfig
from virtuoso.file_storage_manager import FileSystemStorage
from virtuoso.interfaces import ConnectionProvider
from virtuoso.logging_config import get_logger
from .composer import Composer
from .models import Composition, Performance, generate_id, utc_now
from .performer import Performer, StepObserver


class CompositionManager:
    """Central manager for composition operations."""

    EDITABLE_FIELDS = ("name", "description", "tags", "version", "variables")

    def __init__(self, storage_dir: Path, provider: Optional[ConnectionProvider] = None,
                 config: Optional[PerformerConfig] = None,
                 account_overrides: Optional[Dict[str, str]] = None):
        """
        Initialize composition manager.

        Args:
            storage_dir: Directory holding compositions and performances
            provider: Transport for performances; None leaves the manager read/record only
            config: Replay settings
            account_overrides: Identifiers replacing recorded ones, by alias
        """
        self.config = config or PerformerConfig()
        self.storage = FileSystemStorage(storage_dir)
        self.composer = Composer(default_cue_timeout_ms=self.config.default_cue_timeout_ms)
        self.provider = provider
        self.performer = Performer(provider, self.config, account_overrides) if provider else None
        self.logger = get_logger(__name__)

        self.logger.info(f"Initialized composition manager with storage: {storage_dir}")

    @classmethod
    def from_config(cls, config: SystemConfig,
                    provider: Optional[ConnectionProvider] = None) -> "CompositionManager":
        """Manager over the configured data directory, replay settings and account overrides."""
        return cls(
            config.paths.data_dir,
            provider=provider,
            config=config.performer,
            account_overrides=config.accounts
        )

    # Recording operations

    def start_recording(self) -> None:
        """Start recording a new composition."""
        self.composer.start()

    def record_more(self, composition_id: str) -> None:
        """Start a recording session that extends a stored composition."""
        composition = self._require(composition_id)
        self.composer.start_from_existing(composition)

    def stop_recording(self, name: Optional[str] = None, description: Optional[str] = None,
                       tags: Optional[List[str]] = None) -> Optional[Composition]:
        """Stop the current recording session and store the result."""
        composition = self.composer.stop(name=name, description=description, tags=tags)
        if composition is not None:
            self.storage.compositions.save(composition)
        return composition

    def cancel_recording(self) -> None:
        self.composer.cancel()

    def is_recording(self) -> bool:
        return self.composer.is_composing

    def get_recording_status(self) -> Dict[str, Any]:
        return self.composer.get_status()

    # Performance operations

    def perform(self, composition_id: str,
                observers: Optional[Iterable[StepObserver]] = None) -> Performance:
        """
        Perform a stored composition and store the report.

        Raises:
            FileNotFoundError: If the composition does not exist
            RuntimeError: If the manager has no connection provider
            InvalidComposition: If the composition fails structural checks
        """
        if self.performer is None:
            raise RuntimeError("No connection provider configured for performances")

        composition = self._require(composition_id)
        performance = self.performer.run(composition, observers)
        self.storage.performances.save(performance)
        return performance

    def perform_with_tags(self, tags: List[str], stop_on_failure: bool = False) -> List[Performance]:
        """Perform every composition carrying any of the given tags."""
        if self.performer is None:
            raise RuntimeError("No connection provider configured for performances")

        matching = [c for c in self.storage.compositions.load_all() if any(tag in c.tags for tag in tags)]
        if not matching:
            self.logger.warning(f"No compositions found with tags: {tags}")
            return []

        performances = self.performer.run_batch(matching, stop_on_failure=stop_on_failure)
        for performance in performances:
            self.storage.performances.save(performance)
        return performances

    def performances_for(self, composition_id: str) -> List[Performance]:
        return self.storage.performances_for(composition_id)

    def get_performance(self, performance_id: str) -> Optional[Performance]:
        return self.storage.performances.get(performance_id)

    # Composition management

    def list_compositions(self) -> List[Dict[str, Any]]:
        """List summaries of all stored compositions."""
        return [c.get_summary() for c in self.storage.compositions.load_all()]

    def get_composition(self, composition_id: str) -> Optional[Composition]:
        return self.storage.compositions.get(composition_id)

    def delete_composition(self, composition_id: str) -> bool:
        return self.storage.compositions.delete(composition_id)

    def duplicate_composition(self, composition_id: str, new_name: str) -> Optional[str]:
        """Duplicate an existing composition under a new name."""
        original = self.get_composition(composition_id)
        if original is None:
            return None

        now = utc_now()
        data = original.model_dump()
        data.update(id=generate_id("comp"), name=new_name, version="1.0.0", created=now, updated=now)
        duplicate = Composition.model_validate(data)

        self.storage.compositions.save(duplicate)
        self.logger.info(f"Duplicated composition {composition_id} as {duplicate.id}")
        return duplicate.id

    def update_composition_metadata(self, composition_id: str, **kwargs) -> bool:
        """Update editable metadata; steps and accounts are only changed by recording."""
        composition = self.get_composition(composition_id)
        if composition is None:
            return False

        ignored = [name for name in kwargs if name not in self.EDITABLE_FIELDS]
        if ignored:
            self.logger.warning(f"Ignoring non-editable fields: {ignored}")

        data = composition.model_dump()
        data.update({name: value for name, value in kwargs.items() if name in self.EDITABLE_FIELDS})
        data["updated"] = utc_now()

        try:
            updated = Composition.model_validate(data)
        except ValidationError as e:
            self.logger.error(f"Failed to update composition {composition_id}: {e}")
            return False

        self.storage.compositions.save(updated)
        self.logger.info(f"Updated composition {composition_id} metadata")
        return True

    # Analysis and reporting

    def analyze_success_rates(self) -> Dict[str, Any]:
        """Pass rates across all stored performances."""
        performances = self.storage.performances.load_all()
        names = {c.id: c.name for c in self.storage.compositions.load_all()}

        analysis: Dict[str, Any] = {
            "total_compositions": len(names),
            "total_performances": len(performances),
            "overall_success_rate": 0.0,
            "composition_stats": {}
        }
        if not performances:
            return analysis

        passed = sum(1 for p in performances if not p.failures())
        analysis["overall_success_rate"] = (passed / len(performances)) * 100

        stats: Dict[str, Dict[str, Any]] = {}
        for performance in performances:
            entry = stats.setdefault(performance.composition_id, {
                "composition_name": names.get(performance.composition_id),
                "performances": 0,
                "passes": 0,
                "failures": 0,
                "durations": []
            })
            entry["performances"] += 1
            if performance.failures():
                entry["failures"] += 1
            else:
                entry["passes"] += 1
            entry["durations"].append(performance.duration_ms)

        for entry in stats.values():
            durations = entry.pop("durations")
            entry["avg_duration_ms"] = sum(durations) / len(durations)
            entry["success_rate"] = (entry["passes"] / entry["performances"]) * 100

        analysis["composition_stats"] = stats
        return analysis

    def export_compositions(self, output_dir: Path, format: str = "json") -> List[Path]:
        """Export all compositions to the given format."""
        format = format.lower()
        if format not in ("json", "yaml"):
            raise ValueError(f"Unsupported export format: {format}")

        output_dir.mkdir(parents=True, exist_ok=True)
        exported_files = []

        for composition in self.storage.compositions.load_all():
            if format == "json":
                output_file = output_dir / f"{composition.id}.json"
                composition.save_to_file(output_file)
            else:
                output_file = output_dir / f"{composition.id}.yaml"
                with open(output_file, "w", encoding="utf-8") as f:
                    yaml.safe_dump(composition.model_dump(mode="json"), f,
                                   default_flow_style=False, sort_keys=False)
            exported_files.append(output_file)

        self.logger.info(f"Exported {len(exported_files)} compositions to {output_dir}")
        return exported_files

    def import_compositions(self, import_dir: Path) -> List[str]:
        """Import compositions from JSON and YAML files in a directory."""
        imported_ids = []

        for file_path in sorted(import_dir.iterdir()):
            if file_path.suffix not in (".json", ".yaml", ".yml"):
                continue
            try:
                composition = self._read_composition(file_path)
            except (OSError, yaml.YAMLError, ValidationError) as e:
                self.logger.error(f"Failed to import composition from {file_path}: {e}")
                continue

            self.storage.compositions.save(composition)
            imported_ids.append(composition.id)

        self.logger.info(f"Imported {len(imported_ids)} compositions from {import_dir}")
        return imported_ids

    # Helper methods

    @staticmethod
    def _read_composition(file_path: Path) -> Composition:
        if file_path.suffix == ".json":
            return Composition.load_from_file(file_path)
        with open(file_path, encoding="utf-8") as f:
            return Composition.model_validate(yaml.safe_load(f))

    def _require(self, composition_id: str) -> Composition:
        composition = self.get_composition(composition_id)
        if composition is None:
            raise FileNotFoundError(f"Composition {composition_id} not found")
        return composition

    def get_manager_status(self) -> Dict[str, Any]:
        """Get overall manager status."""
        return {
            "storage_dir": str(self.storage.base_path),
            "recording": self.is_recording(),
            "total_compositions": len(self.storage.compositions.load_all()),
            "total_performances": len(self.storage.performances.load_all()),
            "provider_available": self.provider is not None
        }
