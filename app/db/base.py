"""Declarative base for the accounting tables."""

from __future__ import annotations

import re

from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")


class Base(DeclarativeBase):
    """Tables are named after the model in plural snake case (``UsageTotal`` -> ``usage_totals``)."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return f"{_CAMEL_BOUNDARY_RE.sub('_', cls.__name__).lower()}s"

    id: Mapped[int] = mapped_column(primary_key=True)


__all__ = ["Base"]
