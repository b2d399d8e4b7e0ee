from dataclasses import dataclass
from typing import Protocol
from .core.coordinator import ChangeCoordinator
from .core.model import NoteId


@dataclass
class Finding:
    severity: str  # "info" | "warn" | "error"
    note_id: NoteId
    message: str


class LintRule(Protocol):
    id: str

    def check(self, coordinator: ChangeCoordinator) -> list[Finding]:
        pass


class DanglingLinksRule:
    id = "dangling-links"

    def check(self, coordinator: ChangeCoordinator) -> list[Finding]:
        out: list[Finding] = []
        for nid in coordinator.catalog.ids():
            for link in coordinator.get_outbound_links(nid):
                if link.dangling:
                    out.append(
                        Finding(
                            "warn",
                            nid,
                            f"[[{link.raw_target}]] points at deleted note {link.target_note_id}",
                        )
                    )
        return out


class TitleCollisionRule:
    id = "title-collisions"

    def check(self, coordinator: ChangeCoordinator) -> list[Finding]:
        out: list[Finding] = []
        for metas in coordinator.catalog.collisions().values():
            ids = ", ".join(m.id for m in metas)
            for m in metas:
                out.append(Finding("warn", m.id, f"title {m.title!r} shared by {ids}"))
        return out


class PendingRule:
    id = "sync-pending"

    def check(self, coordinator: ChangeCoordinator) -> list[Finding]:
        return [
            Finding("error", nid, f"links not resolved: {err}")
            for nid, err in sorted(coordinator.pending().items())
        ]


RULES: tuple[LintRule, ...] = (DanglingLinksRule(), TitleCollisionRule(), PendingRule())


def run_lint(coordinator: ChangeCoordinator, rules=RULES) -> list[Finding]:
    findings: list[Finding] = []
    for rule in rules:
        findings.extend(rule.check(coordinator))
    return findings
