"""
Permission evaluation tests
"""

import pytest

from services import PermissionEvaluator, PermissionLevel
from tests.conftest import make_message


@pytest.fixture
def evaluator():
    return PermissionEvaluator(
        owner=['1'],
        admins=['200'],
        admin_roles=['Moderators'],
        dj_roles=['DJ']
    )


class TestPermissionLevels:

    def test_levels_are_ordered(self):
        assert PermissionLevel.EVERYONE < PermissionLevel.DJ < PermissionLevel.ADMIN < PermissionLevel.OWNER

    def test_level_for(self, evaluator):
        assert evaluator.level_for('1') == PermissionLevel.OWNER
        assert evaluator.level_for(200) == PermissionLevel.ADMIN
        assert evaluator.level_for('300', ['moderators']) == PermissionLevel.ADMIN
        assert evaluator.level_for('300', ['DJ', 'Fans']) == PermissionLevel.DJ
        assert evaluator.level_for('300', ['Fans']) == PermissionLevel.EVERYONE

    def test_highest_level_wins(self, evaluator):
        assert evaluator.level_for('1', ['DJ']) == PermissionLevel.OWNER

    def test_check(self, evaluator):
        assert evaluator.check('300', [], PermissionLevel.EVERYONE)
        assert not evaluator.check('300', [], PermissionLevel.ADMIN)
        assert evaluator.check('200', [], PermissionLevel.ADMIN)
        assert not evaluator.check('200', [], PermissionLevel.OWNER)
        assert evaluator.check('300', ['DJ'], PermissionLevel.DJ)

    def test_check_message_uses_author_roles(self, evaluator):
        assert evaluator.check_message(make_message('x', author_id=300, roles=['DJ']), PermissionLevel.DJ)
        assert not evaluator.check_message(make_message('x', author_id=300), PermissionLevel.DJ)

    def test_add_owner(self, evaluator):
        evaluator.add_owner(42)
        evaluator.add_owner('42')
        assert evaluator.owner == ['1', '42']
        assert evaluator.level_for('42') == PermissionLevel.OWNER

    def test_from_config(self, config):
        evaluator = PermissionEvaluator.from_config(config)
        assert evaluator.level_for('200') == PermissionLevel.ADMIN
        assert evaluator.level_for('5', ['Moderators']) == PermissionLevel.ADMIN
