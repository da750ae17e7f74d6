# rentals/filters.py
"""Filter state of the listing browser.

The state is an immutable value: every change produces a new `FilterState`.
Any change other than the page number sends the browser back to page 1.
"""
from dataclasses import dataclass, fields, replace


def _price_text(value):
    if value in ("", None):
        return ""
    number = float(value)
    return str(int(number)) if number.is_integer() else str(number)


@dataclass(frozen=True)
class FilterState:
    status: str = ""
    vehicle_age: str = ""
    license: str = ""
    delivery: str = ""
    search: str = ""
    min: str = ""
    max: str = ""
    popular: bool = False
    agency_name: str = ""
    brand: str = ""
    sort_by: str = "created_at"
    order: str = "desc"
    page: int = 1

    def criteria(self):
        """Everything except the page number."""
        return tuple(getattr(self, f.name) for f in fields(self) if f.name != "page")

    def update(self, **changes) -> "FilterState":
        updated = replace(self, **changes)
        if updated.criteria() != self.criteria():
            updated = replace(updated, page=1)
        return updated

    def go_to(self, page: int) -> "FilterState":
        return replace(self, page=max(1, int(page)))

    def toggle_status(self, status: str) -> "FilterState":
        return self.update(status="" if self.status == status else status)

    def with_price_range(self, low, high) -> "FilterState":
        low = "" if low in ("", None) else max(0.0, float(low))
        high = "" if high in ("", None) else float(high)
        if low != "" and high != "" and low > high:
            low, high = high, low
        return self.update(min=_price_text(low), max=_price_text(high))

    def reset(self) -> "FilterState":
        return FilterState()

    def to_params(self):
        params = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value is False or value == "":
                continue
            key = "vehicle_status" if f.name == "status" else f.name
            params[key] = "true" if value is True else str(value)
        return params
