"""Read-only queries over the member directory."""

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from devportal.domain.errors import NotFoundError
from devportal.infrastructure.database.models import Group, Organization, Team, User


class MemberRepository:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, model, entity: str, key: str):
        row = self.db.get(model, key)
        if row is None:
            raise NotFoundError(entity)
        return row

    def get_user_by_email(self, email: str) -> User:
        user = self.db.scalars(select(User).where(User.email == email)).first()
        if user is None:
            raise NotFoundError("user")
        return user

    def get_user_by_name(self, name: str) -> User:
        user = self.db.scalars(select(User).where(User.name == name)).first()
        if user is None:
            raise NotFoundError("user")
        return user

    def get_team(self, team_id: str) -> Team:
        return self._get(Team, "team", team_id)

    def get_group(self, group_id: str) -> Group:
        return self._get(Group, "group", group_id)

    def get_organization(self, org_id: str) -> Organization:
        return self._get(Organization, "organization", org_id)

    def list_organizations(self, limit: int, offset: int = 0) -> List[Organization]:
        query = select(Organization).order_by(Organization.name).limit(limit).offset(offset)
        return list(self.db.scalars(query))

    def list_groups_by_organization(self, org_id: str, limit: int, offset: int = 0) -> List[Group]:
        query = select(Group).where(Group.org_id == org_id).order_by(Group.name).limit(limit).offset(offset)
        return list(self.db.scalars(query))

    def list_teams_by_group(self, group_id: str, limit: int, offset: int = 0) -> List[Team]:
        query = select(Team).where(Team.group_id == group_id).order_by(Team.name).limit(limit).offset(offset)
        return list(self.db.scalars(query))
