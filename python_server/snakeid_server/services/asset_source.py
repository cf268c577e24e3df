"""Bundled asset resolution: model weights, label list and reference table."""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..config import DEFAULT_LABELS_NAME, DEFAULT_MODEL_NAMES, DEFAULT_REFERENCE_TABLE_NAME
from ..exceptions import DataLoadError, ModelLoadError

logger = logging.getLogger(__name__)


def parse_labels(text: str) -> List[str]:
    """Split a label list into labels.

    One label per line, "\\n" or "\\r\\n" separated. Surrounding whitespace
    is stripped and blank lines are skipped; case is preserved.
    """
    return [line.strip() for line in text.splitlines() if line.strip()]


class AssetSource:
    """Resolves the logical asset paths inside an assets directory."""

    def __init__(
        self,
        assets_dir: Union[str, Path],
        model_names: Sequence[str] = DEFAULT_MODEL_NAMES,
        labels_name: str = DEFAULT_LABELS_NAME,
        reference_table_name: str = DEFAULT_REFERENCE_TABLE_NAME,
    ):
        self.assets_dir = Path(assets_dir).expanduser()
        self.model_names = tuple(model_names)
        self.labels_name = labels_name
        self.reference_table_name = reference_table_name

    @property
    def labels_path(self) -> Path:
        return self.assets_dir / self.labels_name

    @property
    def reference_table_path(self) -> Path:
        return self.assets_dir / self.reference_table_name

    def find_model(self) -> Optional[Path]:
        """Return the first existing model file, or None."""
        for name in self.model_names:
            candidate = self.assets_dir / name
            if candidate.is_file():
                return candidate
        return None

    def resolve_model(self) -> Path:
        """Return the model file path.

        Raises:
            ModelLoadError: If none of the candidate model files exist
        """
        model_path = self.find_model()
        if model_path is None:
            raise ModelLoadError(
                "No model found in %s (looked for %s)"
                % (self.assets_dir, ", ".join(self.model_names)))
        logger.info("Resolved model asset: %s", model_path)
        return model_path

    def load_labels(self) -> List[str]:
        """Read the label list.

        Raises:
            DataLoadError: If the file is missing, unreadable or has no labels
        """
        path = self.labels_path
        try:
            text = path.read_text(encoding="utf-8-sig")
        except FileNotFoundError:
            raise DataLoadError(path, "file not found")
        except (OSError, UnicodeDecodeError) as e:
            raise DataLoadError(path, str(e))

        labels = parse_labels(text)
        if not labels:
            raise DataLoadError(path, "label list is empty")
        logger.info("Loaded %d labels from %s", len(labels), path)
        return labels
