"""
Tests for identity resolution on rider_auth / admin_auth.
"""

from django.test import SimpleTestCase
from rest_framework_simplejwt.tokens import AccessToken

from dispatch.identity import resolve_identity
from dispatch.models import Role
from dispatch.tests.helpers import make_server


def issue_token(subject, role=None):
    token = AccessToken()
    token['user_id'] = subject
    if role is not None:
        token['role'] = role
    return str(token)


class TestResolveIdentity(SimpleTestCase):

    def test_claimed_identity_trusted_without_verification(self):
        """Without verification the claimed id is taken as is."""
        result = resolve_identity('R1', None, Role.RIDER)
        self.assertTrue(result.ok)
        self.assertEqual(result.value, 'R1')

    def test_missing_identity_left_to_caller(self):
        """No id and no verification: the caller mints one."""
        result = resolve_identity('', None, Role.RIDER)
        self.assertTrue(result.ok)
        self.assertIsNone(result.value)

    def test_verification_requires_token(self):
        """No token, no identity."""
        result = resolve_identity('R1', None, Role.RIDER, verify=True)
        self.assertEqual(result.reason, 'missing credential')

    def test_verification_rejects_garbage_token(self):
        """A token that does not decode is refused."""
        result = resolve_identity('R1', 'not-a-jwt', Role.RIDER, verify=True)
        self.assertEqual(result.reason, 'invalid credential')

    def test_identity_taken_from_token_subject(self):
        """The token subject fills in a missing id."""
        result = resolve_identity(None, issue_token('R7'), Role.RIDER, verify=True)
        self.assertEqual(result.value, 'R7')

    def test_claimed_identity_must_match_token(self):
        """The claimed id must be the token subject."""
        result = resolve_identity('R1', issue_token('R7'), Role.RIDER, verify=True)
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, 'identity does not match credential')

    def test_role_claim_must_match(self):
        """A rider token cannot authenticate an admin."""
        result = resolve_identity('R1', issue_token('R1', role='admin'), Role.RIDER, verify=True)
        self.assertEqual(result.reason, 'credential role mismatch')

    def test_matching_role_claim_accepted(self):
        """An admin token authenticates an admin."""
        result = resolve_identity('A1', issue_token('A1', role='admin'), Role.ADMIN, verify=True)
        self.assertEqual(result.value, 'A1')


class TestVerifiedAuthFrames(SimpleTestCase):

    def setUp(self):
        self.server, self.transport, _ = make_server(verify_tokens=True)

    async def test_rider_auth_with_valid_token(self):
        """A signed token authenticates the rider end to end."""
        connection_id = self.server.registry.register('r1')
        await self.server.receive(connection_id, {
            'type': 'rider_auth', 'riderId': 'R1', 'token': issue_token('R1'),
        })

        self.assertEqual(self.transport.last_for('r1')['type'], 'auth_success')
        self.assertIn('R1', self.server.presence)

    async def test_rider_auth_with_foreign_token_rejected(self):
        """Another rider's token gets an error and leaves the socket unauthenticated."""
        connection_id = self.server.registry.register('r1')
        await self.server.receive(connection_id, {
            'type': 'rider_auth', 'riderId': 'R1', 'token': issue_token('R2'),
        })

        frame = self.transport.last_for('r1')
        self.assertEqual(frame['type'], 'error')
        self.assertEqual(frame['request'], 'rider_auth')
        self.assertNotIn('R1', self.server.presence)
        self.assertEqual(self.server.registry.get(connection_id).role, Role.UNAUTHENTICATED)
