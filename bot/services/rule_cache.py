from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from bot.services.rule_store import PunishmentRuleData
from db.models import TargetType

RuleKey = Tuple[TargetType, int]


@dataclass(frozen=True, slots=True)
class RuleTrack:
    standard: tuple[PunishmentRuleData, ...] = ()
    lenient: tuple[PunishmentRuleData, ...] = ()


@dataclass(frozen=True, slots=True)
class _RuleIndex:
    tracks: Dict[RuleKey, RuleTrack]
    user_keys: frozenset[int]
    role_keys: frozenset[int]


_EMPTY_INDEX = _RuleIndex(tracks={}, user_keys=frozenset(), role_keys=frozenset())


class PunishmentRuleCache:
    """
    In-memory index of active punishment rules keyed by (target, key).

    The index is rebuilt wholesale by `refresh` and swapped in with a single
    assignment, so a reader holds either the old or the new index, never a mix.
    """

    def __init__(self, rules: Optional[Iterable[PunishmentRuleData]] = None):
        self._index = _EMPTY_INDEX
        if rules is not None:
            self.refresh(rules)

    def refresh(self, rules: Iterable[PunishmentRuleData]) -> None:
        grouped: Dict[RuleKey, Dict[bool, list[PunishmentRuleData]]] = {}
        for rule in rules:
            if not rule.active or rule.target_key is None:
                continue
            key = (TargetType(rule.target), int(rule.target_key))
            grouped.setdefault(key, {True: [], False: []})[bool(rule.lenient)].append(rule)

        tracks: Dict[RuleKey, RuleTrack] = {}
        for key, by_leniency in grouped.items():
            tracks[key] = RuleTrack(
                standard=tuple(sorted(by_leniency[False], key=_rule_order)),
                lenient=tuple(sorted(by_leniency[True], key=_rule_order)),
            )

        self._index = _RuleIndex(
            tracks=tracks,
            user_keys=frozenset(k for (target, k) in tracks if target is TargetType.USER),
            role_keys=frozenset(k for (target, k) in tracks if target is TargetType.ROLE),
        )

    def blocked_user_keys(self) -> frozenset[int]:
        return self._index.user_keys

    def blocked_role_keys(self) -> frozenset[int]:
        return self._index.role_keys

    def get_rules(
        self,
        target: TargetType | str,
        key: int,
        lenient: bool = False,
    ) -> tuple[PunishmentRuleData, ...]:
        track = self._index.tracks.get((TargetType(target), int(key)))
        if track is None:
            return ()
        # leniency overrides the standard track; it never exempts anyone
        if lenient and track.lenient:
            return track.lenient
        return track.standard

    def get_track(self, target: TargetType | str, key: int) -> RuleTrack:
        return self._index.tracks.get((TargetType(target), int(key)), RuleTrack())

    def has_rules(self, target: TargetType | str, key: int) -> bool:
        track = self._index.tracks.get((TargetType(target), int(key)))
        return track is not None and bool(track.standard or track.lenient)

    def is_monitored_member(self, member) -> bool:
        if member is None:
            return False
        index = self._index
        if member.id in index.user_keys:
            return True
        return any(role.id in index.role_keys for role in getattr(member, "roles", ()))

    def targets(self) -> list[RuleKey]:
        return sorted(self._index.tracks, key=lambda item: (item[0].value, item[1]))

    def __len__(self) -> int:
        return sum(len(t.standard) + len(t.lenient) for t in self._index.tracks.values())


def _rule_order(rule: PunishmentRuleData) -> tuple[int, int]:
    return rule.priority_index, rule.id or 0
