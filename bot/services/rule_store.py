from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from db.errors import DeleteError, InsertError, SelectError
from db.models import PunishmentRule, PunishmentType, TargetType


@dataclass(frozen=True, slots=True)
class PunishmentRuleData:
    priority_index: int
    target: TargetType
    target_key: Optional[int]
    type: PunishmentType
    lenient: bool
    length: Optional[int] = None
    active: bool = True
    id: Optional[int] = None

    @classmethod
    def from_model(cls, model: PunishmentRule) -> "PunishmentRuleData":
        return cls(
            id=model.id,
            priority_index=model.priority_index,
            target=TargetType(model.target.strip()),
            target_key=model.target_key,
            type=PunishmentType(model.type.strip()),
            lenient=bool(model.lenient),
            length=model.length,
            active=bool(model.active),
        )


class PunishmentRuleStore:
    """
    Moderator-configured punishment tiers. Rules are soft deleted so a removed
    (index, target, key, lenient) slot can be created again later.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(
        self,
        priority_index: int,
        type: PunishmentType | str,
        target: TargetType | str,
        target_key: int,
        lenient: bool = False,
        length: Optional[int] = None,
    ) -> PunishmentRuleData:
        try:
            type = PunishmentType(type)
        except ValueError as exc:
            raise InsertError(f"An invalid punishment type was provided: {type}") from exc
        try:
            target = TargetType(target)
        except ValueError as exc:
            raise InsertError(f"An invalid punishment target was provided: {target}") from exc
        if target_key is None:
            raise InsertError(f"{target.value} requires a target key")
        if length is not None and length < 0:
            raise InsertError("punishment length cannot be negative")

        try:
            with self._session_factory() as session:
                model = self._find(session, priority_index, target, target_key, lenient)
                if model is not None and model.active:
                    raise InsertError(
                        f"#{priority_index} already exists for {target.value} {target_key} (lenient={lenient})"
                    )
                if model is None:
                    model = PunishmentRule(
                        priority_index=priority_index,
                        target=target.value,
                        target_key=target_key,
                        lenient=lenient,
                    )
                model.active = True
                model.type = type.value
                model.length = length
                session.add(model)
                session.commit()
                session.refresh(model)
                return PunishmentRuleData.from_model(model)
        except IntegrityError as exc:
            raise InsertError(exc) from exc
        except SQLAlchemyError as exc:
            raise InsertError(exc) from exc

    def remove(
        self,
        priority_index: int,
        target: TargetType | str,
        target_key: int,
        lenient: bool = False,
    ) -> bool:
        try:
            with self._session_factory() as session:
                model = self._find(session, priority_index, TargetType(target), target_key, lenient)
                if model is None or not model.active:
                    return False
                model.active = False
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise DeleteError(exc) from exc

    def get_all_active(self) -> List[PunishmentRuleData]:
        try:
            with self._session_factory() as session:
                rows = (
                    session.query(PunishmentRule)
                    .filter(PunishmentRule.active.is_(True), PunishmentRule.target_key.is_not(None))
                    .order_by(PunishmentRule.priority_index.asc(), PunishmentRule.id.asc())
                    .all()
                )
                return [PunishmentRuleData.from_model(row) for row in rows]
        except SQLAlchemyError as exc:
            raise SelectError(exc) from exc

    def _find(
        self,
        session: Session,
        priority_index: int,
        target: TargetType,
        target_key: int,
        lenient: bool,
    ) -> Optional[PunishmentRule]:
        return (
            session.query(PunishmentRule)
            .filter(
                PunishmentRule.priority_index == priority_index,
                PunishmentRule.target == target.value,
                PunishmentRule.target_key == target_key,
                PunishmentRule.lenient.is_(bool(lenient)),
            )
            .one_or_none()
        )
