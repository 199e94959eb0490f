"""
Permission Evaluation for GuildKit
"""

import logging
from enum import IntEnum
from typing import Iterable, List, Set

logger = logging.getLogger('guildkit.services.permission_service')

class PermissionLevel(IntEnum):
    """Totally ordered permission levels"""
    EVERYONE = 0
    DJ = 10
    ADMIN = 20
    OWNER = 30

class PermissionEvaluator:
    """
    Decides whether an actor may invoke a command.

    The only state is the configured owner/admin id lists and admin/DJ role
    names; evaluation itself is a pure function of its arguments.
    """

    def __init__(self, owner: Iterable[str] = (), admins: Iterable[str] = (),
                 admin_roles: Iterable[str] = (), dj_roles: Iterable[str] = ()):
        self.owner: List[str] = [str(i) for i in owner]
        self.admins: List[str] = [str(i) for i in admins]
        self.admin_roles: Set[str] = {r.lower() for r in admin_roles}
        self.dj_roles: Set[str] = {r.lower() for r in dj_roles}

    @classmethod
    def from_config(cls, config) -> 'PermissionEvaluator':
        return cls(config.owner, config.admins, config.admin_roles, config.dj_roles)

    def add_owner(self, user_id) -> None:
        user_id = str(user_id)
        if user_id not in self.owner:
            self.owner.append(user_id)
            logger.info(f"Added owner {user_id}")

    def level_for(self, actor_id, role_names: Iterable[str] = ()) -> PermissionLevel:
        """Highest level the actor attains"""
        actor_id = str(actor_id)
        if actor_id in self.owner:
            return PermissionLevel.OWNER
        if actor_id in self.admins:
            return PermissionLevel.ADMIN

        roles = {name.lower() for name in role_names}
        if roles & self.admin_roles:
            return PermissionLevel.ADMIN
        if roles & self.dj_roles:
            return PermissionLevel.DJ
        return PermissionLevel.EVERYONE

    def check(self, actor_id, role_names: Iterable[str], required: PermissionLevel) -> bool:
        return self.level_for(actor_id, role_names) >= required

    def check_message(self, message, required: PermissionLevel) -> bool:
        """Evaluate the author of a platform message"""
        if required <= PermissionLevel.EVERYONE:
            return True
        author = message.author
        return self.check(author.id, role_names_of(author), required)

def role_names_of(member) -> List[str]:
    """Role names of a guild member; plain users (DMs) have none"""
    roles = getattr(member, 'roles', None) or []
    return [role.name for role in roles if getattr(role, 'name', None)]
