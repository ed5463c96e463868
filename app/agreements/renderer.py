# app/agreements/renderer.py

"""
Token substitution for agreement templates.

Templates are rich-text bodies containing tokens of the form
``{{ namespace.field }}``. Rendering is a single left-to-right pass:
known tokens are replaced with values from a RenderingContext, well-formed
but unknown tokens become empty strings, and anything that is not a
well-formed token (including unmatched braces) is left untouched.
Substituted values are never rescanned.
"""

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

DATE_FORMAT = "%d %b %Y"

TOKEN_PATTERN = re.compile(
    r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}"
)


class TemplateToken(str, Enum):
    """Closed set of tokens a template may reference."""
    VEHICLE_MAKE = "vehicle.make"
    VEHICLE_MODEL = "vehicle.model"
    VEHICLE_YEAR = "vehicle.year"
    VEHICLE_VIN = "vehicle.vin"
    VEHICLE_LICENSE_PLATE = "vehicle.license_plate"
    INSPECTION_DATE = "inspection.date"
    INSPECTION_EXTERIOR_CONDITION = "inspection.exterior_condition"
    INSPECTION_INTERIOR_CONDITION = "inspection.interior_condition"
    INSPECTION_MECHANICAL_CONDITION = "inspection.mechanical_condition"
    ORGANISATION_NAME = "organisation.name"

    @property
    def namespace(self) -> str:
        return self.value.split(".", 1)[0]

    @property
    def field(self) -> str:
        return self.value.split(".", 1)[1]


# === Rendering context ===

class VehicleSnapshot(BaseModel):
    """Read-only view of the vehicle an agreement covers"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vin: Optional[str] = None
    license_plate: Optional[str] = None
    display_name: str = "Unknown Vehicle"


class InspectionSnapshot(BaseModel):
    """Read-only view of the handover inspection"""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    inspection_date: Optional[date] = None
    exterior_condition: Optional[str] = None
    interior_condition: Optional[str] = None
    mechanical_condition: Optional[str] = None
    inspector_name: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_inspection(cls, inspection) -> "InspectionSnapshot":
        """Build from a VehicleInspection row, falling back to its creation date"""
        inspected_on = inspection.inspection_date
        if inspected_on is None and inspection.created_on is not None:
            inspected_on = inspection.created_on.date()
        inspector = getattr(inspection, "inspector", None)
        return cls(
            id=inspection.id,
            inspection_date=inspected_on,
            exterior_condition=inspection.exterior_condition,
            interior_condition=inspection.interior_condition,
            mechanical_condition=inspection.mechanical_condition,
            inspector_name=inspector.name if inspector else None,
            notes=inspection.additional_notes,
        )


class RenderingContext(BaseModel):
    """Everything a template body can draw values from"""
    model_config = ConfigDict(frozen=True)

    organisation_name: Optional[str] = None
    vehicle: VehicleSnapshot
    inspection: Optional[InspectionSnapshot] = None


# === Resolvers ===

def _inspection_value(attribute: str) -> Callable[[RenderingContext], Any]:
    def resolve(context: RenderingContext) -> Any:
        if context.inspection is None:
            return None
        return getattr(context.inspection, attribute)
    return resolve


_RESOLVERS: Dict[TemplateToken, Callable[[RenderingContext], Any]] = {
    TemplateToken.VEHICLE_MAKE: lambda ctx: ctx.vehicle.make,
    TemplateToken.VEHICLE_MODEL: lambda ctx: ctx.vehicle.model,
    TemplateToken.VEHICLE_YEAR: lambda ctx: ctx.vehicle.year,
    TemplateToken.VEHICLE_VIN: lambda ctx: ctx.vehicle.vin,
    TemplateToken.VEHICLE_LICENSE_PLATE: lambda ctx: ctx.vehicle.license_plate,
    TemplateToken.INSPECTION_DATE: _inspection_value("inspection_date"),
    TemplateToken.INSPECTION_EXTERIOR_CONDITION: _inspection_value("exterior_condition"),
    TemplateToken.INSPECTION_INTERIOR_CONDITION: _inspection_value("interior_condition"),
    TemplateToken.INSPECTION_MECHANICAL_CONDITION: _inspection_value("mechanical_condition"),
    TemplateToken.ORGANISATION_NAME: lambda ctx: ctx.organisation_name,
}

_unresolved = set(TemplateToken) - set(_RESOLVERS)
if _unresolved:
    raise RuntimeError(f"Template tokens without a resolver: {sorted(t.value for t in _unresolved)}")

_TOKENS_BY_KEY = {token.value: token for token in TemplateToken}


def format_value(value: Any) -> str:
    """Stringify a resolved value; dates use DD Mon YYYY"""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    return str(value)


def resolve_token(token: TemplateToken, context: RenderingContext) -> str:
    return format_value(_RESOLVERS[token](context))


def render(body: str, context: RenderingContext) -> str:
    """Substitute every token in ``body`` using ``context``."""
    if not body:
        return ""

    def substitute(match: re.Match) -> str:
        token = _TOKENS_BY_KEY.get(f"{match.group(1)}.{match.group(2)}")
        if token is None:
            return ""
        return resolve_token(token, context)

    return TOKEN_PATTERN.sub(substitute, body)


def find_unknown_tokens(body: str) -> List[str]:
    """Well-formed tokens in ``body`` that are outside the supported set"""
    unknown = []
    for match in TOKEN_PATTERN.finditer(body or ""):
        key = f"{match.group(1)}.{match.group(2)}"
        if key not in _TOKENS_BY_KEY and key not in unknown:
            unknown.append(key)
    return unknown


DEFAULT_TEMPLATE_TITLE = "Vehicle Rental Agreement"

DEFAULT_TEMPLATE_BODY = """<h2>Vehicle Rental Agreement</h2>
<p>This agreement confirms that {{ organisation.name }} has issued the following vehicle for use:</p>

<h3>Vehicle Details</h3>
<ul>
  <li><strong>Make:</strong> {{ vehicle.make }}</li>
  <li><strong>Model:</strong> {{ vehicle.model }}</li>
  <li><strong>Year:</strong> {{ vehicle.year }}</li>
  <li><strong>VIN:</strong> {{ vehicle.vin }}</li>
  <li><strong>License Plate:</strong> {{ vehicle.license_plate }}</li>
</ul>

<h3>Inspection Summary</h3>
<p>The most recent handover inspection took place on {{ inspection.date }} with the following notes:</p>
<ul>
  <li><strong>Exterior Condition:</strong> {{ inspection.exterior_condition }}</li>
  <li><strong>Interior Condition:</strong> {{ inspection.interior_condition }}</li>
  <li><strong>Mechanical Condition:</strong> {{ inspection.mechanical_condition }}</li>
</ul>

<p>By signing, the driver acknowledges receipt of the vehicle in the above condition and agrees to follow all safety and reporting requirements.</p>"""
