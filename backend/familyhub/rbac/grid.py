"""Immutable, total EntityKind x PrivilegeKind -> AccessLevel table, and the
resolved (grid, special permissions) pair computed for a caller."""
from __future__ import annotations

from collections.abc import Iterator, Mapping

from familyhub.rbac.vocabulary import (
    ENTITY_KINDS,
    PRIVILEGE_KINDS,
    SPECIAL_PERMISSIONS,
    AccessLevel,
    EntityKind,
    PrivilegeKind,
    SpecialPermission,
)

_ENTITY_INDEX: dict[EntityKind, int] = {e: i for i, e in enumerate(ENTITY_KINDS)}
_PRIVILEGE_INDEX: dict[PrivilegeKind, int] = {p: i for i, p in enumerate(PRIVILEGE_KINDS)}

Row = Mapping[PrivilegeKind, AccessLevel]


class PrivilegeGrid:
    """Fixed-size privilege table.

    Every (entity, privilege) cell always holds one of the four access
    levels; there is no way to build a grid with a missing cell.
    """

    __slots__ = ("_cells",)

    def __init__(self, cells: tuple[tuple[AccessLevel, ...], ...]) -> None:
        if len(cells) != len(ENTITY_KINDS) or any(
            len(row) != len(PRIVILEGE_KINDS) for row in cells
        ):
            raise ValueError("PrivilegeGrid requires one cell per entity/privilege pair")
        self._cells = cells

    # ---- constructors ----

    @classmethod
    def uniform(cls, level: AccessLevel) -> PrivilegeGrid:
        row = (level,) * len(PRIVILEGE_KINDS)
        return cls((row,) * len(ENTITY_KINDS))

    @classmethod
    def empty(cls) -> PrivilegeGrid:
        return cls.uniform(AccessLevel.NONE)

    @classmethod
    def from_rows(cls, rows: Mapping[EntityKind, Row]) -> PrivilegeGrid:
        """Build a grid from partial rows; anything unspecified is ``none``."""
        cells = []
        for entity in ENTITY_KINDS:
            row = rows.get(entity, {})
            cells.append(tuple(row.get(p, AccessLevel.NONE) for p in PRIVILEGE_KINDS))
        return cls(tuple(cells))

    # ---- lookups ----

    def get(self, entity: EntityKind, privilege: PrivilegeKind) -> AccessLevel:
        return self._cells[_ENTITY_INDEX[entity]][_PRIVILEGE_INDEX[privilege]]

    def __getitem__(self, key: tuple[EntityKind, PrivilegeKind]) -> AccessLevel:
        return self.get(*key)

    def row(self, entity: EntityKind) -> dict[PrivilegeKind, AccessLevel]:
        values = self._cells[_ENTITY_INDEX[entity]]
        return dict(zip(PRIVILEGE_KINDS, values))

    def cells(self) -> Iterator[tuple[EntityKind, PrivilegeKind, AccessLevel]]:
        for entity, row in zip(ENTITY_KINDS, self._cells):
            for privilege, level in zip(PRIVILEGE_KINDS, row):
                yield entity, privilege, level

    # ---- derivations ----

    def with_row(self, entity: EntityKind, row: Row) -> PrivilegeGrid:
        cells = list(self._cells)
        cells[_ENTITY_INDEX[entity]] = tuple(
            row.get(p, AccessLevel.NONE) for p in PRIVILEGE_KINDS
        )
        return PrivilegeGrid(tuple(cells))

    def with_cell(
        self, entity: EntityKind, privilege: PrivilegeKind, level: AccessLevel
    ) -> PrivilegeGrid:
        row = self.row(entity)
        row[privilege] = level
        return self.with_row(entity, row)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            entity.value: {p.value: level.value for p, level in zip(PRIVILEGE_KINDS, row)}
            for entity, row in zip(ENTITY_KINDS, self._cells)
        }

    # ---- value semantics ----

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrivilegeGrid):
            return NotImplemented
        return self._cells == other._cells

    def __hash__(self) -> int:
        return hash(self._cells)

    def __repr__(self) -> str:
        granted = sum(1 for _, _, level in self.cells() if level is not AccessLevel.NONE)
        return f"<PrivilegeGrid {granted} granted cells>"


class EffectivePrivileges:
    """Resolved grid plus total special-permission map for one caller."""

    __slots__ = ("grid", "special")

    def __init__(self, grid: PrivilegeGrid, special: Mapping[SpecialPermission, bool]) -> None:
        self.grid = grid
        self.special = {sp: bool(special.get(sp, False)) for sp in SPECIAL_PERMISSIONS}

    @classmethod
    def nothing(cls) -> EffectivePrivileges:
        return cls(PrivilegeGrid.empty(), {})

    def level(self, entity: EntityKind, privilege: PrivilegeKind) -> AccessLevel:
        return self.grid.get(entity, privilege)

    def has_special(self, permission: SpecialPermission) -> bool:
        return self.special[permission]

    def to_dict(self) -> dict:
        return {
            "entity_privileges": self.grid.to_dict(),
            "special_permissions": {sp.value: v for sp, v in self.special.items()},
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EffectivePrivileges):
            return NotImplemented
        return self.grid == other.grid and self.special == other.special

    def __repr__(self) -> str:
        granted = sorted(sp.value for sp, v in self.special.items() if v)
        return f"<EffectivePrivileges {self.grid!r} special={granted}>"
