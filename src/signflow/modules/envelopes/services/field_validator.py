from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional


@dataclass(frozen=True)
class FieldBox:
    """Caja de un campo en las mismas unidades que la página contra la que se valida."""
    id: str
    page: int
    x: float
    y: float
    width: float
    height: float

    def scaled(self, page_width: float, page_height: float) -> "FieldBox":
        return FieldBox(
            id=self.id,
            page=self.page,
            x=self.x * page_width,
            y=self.y * page_height,
            width=self.width * page_width,
            height=self.height * page_height,
        )


@dataclass
class FieldError:
    field_id: Optional[str]
    type: str
    message: str

    def to_dict(self) -> dict:
        return {"field_id": self.field_id, "type": self.type, "message": self.message}


@dataclass
class ValidationResult:
    errors: List[FieldError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


# Tolerancia para errores de redondeo al escalar fracciones a puntos
EPSILON = 1e-9


def _position_errors(box: FieldBox, page_width: float, page_height: float) -> List[FieldError]:
    errors = []
    if box.page < 1:
        errors.append(FieldError(box.id, "INVALID_PAGE", "Page numbers start at 1"))
    if box.width <= 0 or box.height <= 0:
        errors.append(FieldError(box.id, "INVALID_SIZE", "Field width and height must be positive"))
    if box.x < 0 or box.y < 0:
        errors.append(FieldError(box.id, "INVALID_POSITION", "Field position cannot be negative"))
    if box.x + box.width > page_width + EPSILON or box.y + box.height > page_height + EPSILON:
        errors.append(FieldError(box.id, "INVALID_POSITION", "Field extends beyond page boundaries"))
    return errors


def boxes_overlap(a: FieldBox, b: FieldBox) -> bool:
    """Bordes que se tocan cuentan como solapamiento."""
    if a.page != b.page:
        return False
    return not (
        a.x + a.width < b.x
        or b.x + b.width < a.x
        or a.y + a.height < b.y
        or b.y + b.height < a.y
    )


def validate_fields(fields: Iterable[FieldBox], page_width: float, page_height: float) -> ValidationResult:
    """Valida límites de página y solapamientos sobre el conjunto COMPLETO de campos.

    El solapamiento es una propiedad por pares, así que un campo nuevo nunca se
    valida aislado: se pasa junto con los existentes.
    """
    result = ValidationResult()
    by_page: Dict[int, List[FieldBox]] = defaultdict(list)

    for box in fields:
        result.errors.extend(_position_errors(box, page_width, page_height))
        by_page[box.page].append(box)

    for page_boxes in by_page.values():
        for i, box in enumerate(page_boxes):
            for other in page_boxes[i + 1:]:
                if boxes_overlap(box, other):
                    result.errors.append(FieldError(
                        box.id, "OVERLAP", f"Field overlaps with field {other.id}"
                    ))
    return result


def validate_page_range(fields: Iterable[FieldBox], page_count: int) -> ValidationResult:
    result = ValidationResult()
    for box in fields:
        if box.page > page_count:
            result.errors.append(FieldError(
                box.id, "PAGE_NOT_FOUND",
                f"Page {box.page} does not exist (document has {page_count} pages)",
            ))
    return result
