"""
YAML interchange for correspondence pairs and fitted models.

Pairs file:

    pairs:
      - pair_id: 3f2a...
        pixel: {x: 120.0, y: 85.5}
        wgs84: {lat: 39.6405, lon: -0.2302}
        active: true

Model file:

    model: {type: affine, a: ..., b: ..., c: ..., d: ..., tx: ..., ty: ...}
    origin: {lat: 39.6405, lon: -0.2302}
    rmse: 1.8
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from snap2map.correspondence import CorrespondencePair, GeodeticPoint
from snap2map.pair_validation import validate_pairs
from snap2map.transforms import TransformModel, model_from_dict, model_to_dict

logger = logging.getLogger(__name__)


def _load_yaml(path: str, section: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    try:
        with open(file_path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse YAML file {path}: {e}") from e
    if not isinstance(data, dict) or section not in data:
        raise ValueError(f"File {path} is missing the '{section}' section")
    return data


def load_pairs(path: str) -> List[CorrespondencePair]:
    """
    Read and validate correspondence pairs.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is malformed or a pair is invalid
    """
    data = _load_yaml(path, "pairs")
    records = data["pairs"] or []
    if not isinstance(records, list):
        raise ValueError(f"'pairs' must be a list, got {type(records).__name__}")

    pairs = []
    for i, record in enumerate(records):
        try:
            pairs.append(CorrespondencePair.from_dict(record))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid pair at index {i} in {path}: {e}") from e

    logger.info(f"Loaded {len(pairs)} pairs from {path}")
    return validate_pairs(pairs)


def save_pairs(path: str, pairs: Sequence[CorrespondencePair]) -> None:
    with open(path, 'w') as f:
        yaml.safe_dump({"pairs": [p.to_dict() for p in pairs]}, f, sort_keys=False)
    logger.info(f"Saved {len(pairs)} pairs to {path}")


def save_model(
    path: str,
    model: TransformModel,
    origin: GeodeticPoint,
    rmse: Optional[float] = None,
) -> None:
    """Write a fitted model together with the origin its local frame uses."""
    data: Dict[str, Any] = {
        "model": model_to_dict(model),
        "origin": origin.to_dict(),
    }
    if rmse is not None:
        data["rmse"] = float(rmse)
    with open(path, 'w') as f:
        yaml.safe_dump(data, f, sort_keys=False)
    logger.info(f"Saved {data['model']['type']} model to {path}")


def load_model(path: str) -> Tuple[TransformModel, GeodeticPoint]:
    """
    Read a model file written by ``save_model``.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is malformed
        UnknownModelTypeError: If the model tag is unknown
    """
    data = _load_yaml(path, "model")
    if "origin" not in data:
        raise ValueError(f"File {path} is missing the 'origin' section")
    try:
        model = model_from_dict(data["model"])
        origin = GeodeticPoint.from_dict(data["origin"])
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid model file {path}: {e}") from e
    return model, origin
