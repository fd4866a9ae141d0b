from typing import Any, Dict, List, Optional

from .errors import ValidationError

# Short launch names -> backend table names
TABLES = {
    "ingredients": "dataset_ingredients",
    "recipes": "dataset_recipes",
    "menu_sets": "dataset_menu_sets",
}

MODEL_DIMENSIONS = {
    "text-embedding-3-small": [512, 1536],
    "text-embedding-3-large": [256, 1024, 3072],
    "text-embedding-ada-002": [1536],
}

MODEL_ALIASES = {
    "small": "text-embedding-3-small",
    "large": "text-embedding-3-large",
    "ada-002": "text-embedding-ada-002",
    "ada": "text-embedding-ada-002",
}

DEFAULT_MODEL = "text-embedding-3-large"
DEFAULT_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def resolve_table(name: Any) -> Optional[str]:
    """Map a short or full table name to the backend table name."""
    if not isinstance(name, str):
        return None
    name = name.strip()
    if name in TABLES:
        return TABLES[name]
    if name in TABLES.values():
        return name
    return None


def short_table_name(table_name: str) -> str:
    for short, full in TABLES.items():
        if full == table_name:
            return short
    return table_name


def resolve_model(name: Any) -> Optional[str]:
    if not isinstance(name, str):
        return None
    name = name.strip()
    if name in MODEL_DIMENSIONS:
        return name
    return MODEL_ALIASES.get(name)


def validate_launch_params(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    if resolve_table(data.get("table")) is None:
        errors.append(
            "Invalid table. Use: " + ", ".join(sorted(TABLES))
        )

    model = resolve_model(data.get("model", DEFAULT_MODEL))
    if model is None:
        errors.append("Invalid model. Use: " + ", ".join(MODEL_DIMENSIONS))
    else:
        dimensions = data.get("dimensions", DEFAULT_DIMENSIONS[model])
        valid = MODEL_DIMENSIONS[model]
        if isinstance(dimensions, bool) or not isinstance(dimensions, int) or dimensions not in valid:
            errors.append(
                f"Invalid dimensions for {model}. Use: "
                + ", ".join(str(d) for d in valid)
            )

    start_offset = data.get("start_offset", 0)
    if isinstance(start_offset, bool) or not isinstance(start_offset, int) or start_offset < 0:
        errors.append("Field 'start_offset' must be a non-negative integer")

    only_missing = data.get("only_missing", True)
    if not isinstance(only_missing, bool):
        errors.append("Field 'only_missing' must be a boolean")

    return errors


class LaunchParams:
    """Validated, normalised parameters of one regeneration job."""

    def __init__(
        self,
        table: str,
        model: str = DEFAULT_MODEL,
        dimensions: Optional[int] = None,
        start_offset: int = 0,
        only_missing: bool = True,
    ):
        self.table = table
        self.model = model
        self.dimensions = dimensions if dimensions is not None else DEFAULT_DIMENSIONS.get(model)
        self.start_offset = start_offset
        self.only_missing = only_missing

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LaunchParams":
        """
        Validate raw launch input and build normalised params.

        Accepts the camelCase keys of the launch request (startOffset,
        onlyMissing) as well as snake_case.

        Raises:
            ValidationError: If any field is rejected
        """
        data = dict(data)
        if "startOffset" in data:
            data["start_offset"] = data.pop("startOffset")
        if "onlyMissing" in data:
            data["only_missing"] = data.pop("onlyMissing")

        errors = validate_launch_params(data)
        if errors:
            raise ValidationError(errors)

        model = resolve_model(data.get("model", DEFAULT_MODEL))
        return cls(
            table=resolve_table(data["table"]),
            model=model,
            dimensions=data.get("dimensions", DEFAULT_DIMENSIONS[model]),
            start_offset=data.get("start_offset", 0),
            only_missing=data.get("only_missing", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "model": self.model,
            "dimensions": self.dimensions,
            "start_offset": self.start_offset,
            "only_missing": self.only_missing,
        }

    def __eq__(self, other) -> bool:
        return isinstance(other, LaunchParams) and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"LaunchParams({self.to_dict()!r})"
