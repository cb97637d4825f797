import re
from functools import cached_property
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from atlas_submittals.domain.models import RecordKind

# Shared header patterns; matched case-insensitively against trimmed header text.
SERIAL_PATTERNS = [r"^(s\.?\s*n\.?|serial(\s*(no\.?|number))?|no\.?|#)$"]
STATUS_PATTERNS = [
    r"^((current|latest)[\s_]*status|status|document\s*record|docr|approval(\s*status)?|review\s*code)$"
]
SUBMISSION_DATE_PATTERNS = [
    r"^((atlas|altas)[\s_]*)?(latest[\s_]*)?sub(mission|mitted)?[\s_]*date$",
    r"^(date[\s_]*submitted|submitted|date)$",
]
PRIORITY_PATTERNS = [r"^priority$"]
DISCIPLINE_PATTERNS = [r"^(disc(ipline)?\.?|department)$"]


class FieldSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")
    patterns: List[str] = Field(default_factory=list)
    default: Optional[str] = None
    # regex -> canonical value, applied to the cleaned cell text
    value_aliases: Dict[str, str] = Field(default_factory=dict)

    @cached_property
    def compiled(self) -> List[re.Pattern]:
        return [re.compile(p, flags=re.IGNORECASE) for p in self.patterns]

    def matches(self, header_text: str) -> bool:
        return any(p.search(header_text) for p in self.compiled)

    def canonical_value(self, text: str) -> str:
        for pattern, canonical in self.value_aliases.items():
            if re.search(pattern, text, flags=re.IGNORECASE):
                return canonical
        return text


class RecordSchema(BaseModel):
    """
    Declarative description of one record kind: which columns to look for,
    which of them anchor header detection, and how to fall back.
    """
    model_config = ConfigDict(extra="ignore")
    kind: RecordKind
    fields: Dict[str, FieldSpec] = Field(default_factory=dict)
    # Each group needs at least one resolved field for a row to count as the header.
    anchors: List[List[str]] = Field(default_factory=list)
    echo_fields: List[str] = Field(default_factory=list)
    title_field: str
    title_fallback_fields: List[str] = Field(default_factory=list)
    title_placeholder: str = "Untitled {n}"
    identifier_field: Optional[str] = None
    external_id_prefix: str = "REC"

    def field(self, name: str) -> Optional[FieldSpec]:
        return self.fields.get(name)

    def default_for(self, name: str, fallback: str = "N/A") -> str:
        spec = self.fields.get(name)
        if spec is None or spec.default is None:
            return fallback
        return spec.default


class FieldConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    documents: RecordSchema
    shop_drawings: RecordSchema

    def schema_for(self, kind: RecordKind) -> RecordSchema:
        if kind == RecordKind.DOCUMENT:
            return self.documents
        return self.shop_drawings


def _default_documents() -> RecordSchema:
    return RecordSchema(
        kind=RecordKind.DOCUMENT,
        fields={
            "serialNumber": FieldSpec(patterns=SERIAL_PATTERNS),
            "documentNumber": FieldSpec(
                patterns=[r"^doc(ument)?[\s_]*(id|no\.?|number|ref(erence)?)$"]
            ),
            "documentName": FieldSpec(
                patterns=[r"^(doc(ument)?[\s_]*(name|title)|title|(document\s*)?description)$"]
            ),
            "documentType": FieldSpec(
                patterns=[r"^(doc(ument)?[\s_]*type|type)$"], default="Unknown"
            ),
            "vendor": FieldSpec(
                patterns=[r"^(vendor([\s_]*name)?|supplier|contractor|company)$"], default="Unknown"
            ),
            "category": FieldSpec(
                patterns=[r"^(categor(y|ies)|cat\.?|class|group)$"],
                default="General",
                value_aliases={
                    r"close\s*-?\s*out": "Closeout Submittal",
                    r"project": "Project Submittal",
                },
            ),
            "discipline": FieldSpec(patterns=DISCIPLINE_PATTERNS, default="General"),
            "system": FieldSpec(patterns=[r"^(system|sys\.?|package|main\s*system)$"], default="Unknown"),
            "currentStatus": FieldSpec(patterns=STATUS_PATTERNS),
            "submissionDate": FieldSpec(patterns=SUBMISSION_DATE_PATTERNS),
            "priority": FieldSpec(patterns=PRIORITY_PATTERNS),
        },
        anchors=[["currentStatus"], ["serialNumber", "documentName", "documentNumber"]],
        echo_fields=["documentName", "serialNumber"],
        title_field="documentName",
        title_placeholder="Document {n}",
        identifier_field="documentNumber",
        external_id_prefix="DOC",
    )


def _default_shop_drawings() -> RecordSchema:
    return RecordSchema(
        kind=RecordKind.SHOP_DRAWING,
        fields={
            "serialNumber": FieldSpec(patterns=SERIAL_PATTERNS),
            "drawingNumber": FieldSpec(
                patterns=[r"^(drawing[\s_]*(number|no\.?)|dwg[\s_]*(no\.?|number)|drawing|dwg)$"]
            ),
            "drawingName": FieldSpec(
                patterns=[r"^(drawing[\s_]*(name|title)|title|description)$"]
            ),
            "drawingType": FieldSpec(
                patterns=[r"^(drawing[\s_]*type|dwg[\s_]*type|type)$"], default="General"
            ),
            "system": FieldSpec(patterns=[r"^(system|sys\.?|main\s*system)$"], default="Unknown"),
            "subSystem": FieldSpec(patterns=[r"^sub[\s_-]*sys(tem)?\.?$"], default="N/A"),
            "projectNumber": FieldSpec(
                patterns=[r"^(project[\s_]*(number|no\.?)|project|job[\s_]*no\.?)$"], default="N/A"
            ),
            "building": FieldSpec(
                patterns=[r"^(building([\s_]*name)?|buildning|bldg\.?|structure|facility)$"], default="N/A"
            ),
            "floor": FieldSpec(patterns=[r"^(floor([\s_]*level)?|level|storey|story)$"], default="N/A"),
            "discipline": FieldSpec(patterns=DISCIPLINE_PATTERNS, default="General"),
            "currentStatus": FieldSpec(patterns=STATUS_PATTERNS),
            "submissionDate": FieldSpec(patterns=SUBMISSION_DATE_PATTERNS),
            "priority": FieldSpec(patterns=PRIORITY_PATTERNS),
        },
        anchors=[["currentStatus"], ["serialNumber", "drawingNumber"]],
        echo_fields=["drawingNumber", "serialNumber", "system"],
        title_field="drawingName",
        title_fallback_fields=["drawingNumber"],
        title_placeholder="Shop Drawing {n}",
        identifier_field="drawingNumber",
        external_id_prefix="SD",
    )


def default_field_config() -> FieldConfig:
    return FieldConfig(documents=_default_documents(), shop_drawings=_default_shop_drawings())


def _merge_schema(base: RecordSchema, override: dict) -> RecordSchema:
    data = base.model_dump()
    fields = data.pop("fields")
    for name, spec in (override.get("fields") or {}).items():
        merged = dict(fields.get(name, {}))
        merged.update(spec or {})
        fields[name] = merged
    data.update({k: v for k, v in override.items() if k != "fields"})
    data["fields"] = fields
    return RecordSchema.model_validate(data)


def load_field_config(path: Optional[Path] = None) -> FieldConfig:
    """
    Load header/alias tables from YAML, layered over the built-in defaults.
    """
    file_path = path or Path("config/fields.yaml")
    defaults = default_field_config()
    if not file_path.exists():
        return defaults

    with open(file_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return FieldConfig(
        documents=_merge_schema(defaults.documents, data.get("documents") or {}),
        shop_drawings=_merge_schema(defaults.shop_drawings, data.get("shop_drawings") or {}),
    )


field_config = load_field_config()
