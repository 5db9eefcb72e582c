# type: ignore
import threading
from unittest.mock import patch

from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase

from ldapsync.exceptions import NotFound, ProvisioningError, SyncInProgress
from ldapsync.mapping import ImportedUser
from ldapsync.models import RoleBinding, User
from ldapsync.provisioning import ImportResult, Provisioner, SyncRunner
from ldapsync.services import RoleBindingService, UserService, role_binding_name

from .utils import InlineExecutor, ParkedExecutor


class ProvisionerTestCase(TestCase):

    def setUp(self):
        self.provisioner = Provisioner()

    def test_provision_creates_user_and_binding(self):
        user = self.provisioner.provision(
            ImportedUser(name="alice", nick_name="Alice", email="alice@example.com")
        )
        self.assertEqual(user.type, User.LDAP)
        self.assertEqual(User.objects.get(name="alice").email, "alice@example.com")
        binding = RoleBinding.objects.get(subject_name="alice")
        self.assertEqual(binding.name, "role-binding-Common User-alice")
        self.assertEqual(binding.role_ref, "Common User")
        self.assertEqual(binding.subject_kind, "User")
        self.assertEqual(binding.created_by, "admin")

    def test_blank_nick_name_defaults_to_name(self):
        user = self.provisioner.provision(ImportedUser(name="bob", email="bob@example.com"))
        self.assertEqual(user.nick_name, "bob")

    def test_explicit_role(self):
        self.provisioner.provision(
            ImportedUser(name="carol", email="carol@example.com"), role="Manager"
        )
        self.assertEqual(
            [b.name for b in RoleBindingService().list_by_subject("carol")],
            [role_binding_name("Manager", "carol")],
        )

    def test_binding_failure_leaves_no_user(self):
        with patch.object(
            RoleBindingService,
            "create_role_binding",
            side_effect=IntegrityError("UNIQUE constraint failed"),
        ):
            with self.assertRaises(ProvisioningError) as cm:
                self.provisioner.provision(ImportedUser(name="dave", email="dave@example.com"))
        self.assertEqual(cm.exception.name, "dave")
        self.assertFalse(User.objects.filter(name="dave").exists())
        self.assertFalse(RoleBinding.objects.filter(subject_name="dave").exists())

    def test_existing_binding_name_rolls_back_user(self):
        RoleBinding.objects.create(
            name=role_binding_name("Common User", "erin"),
            subject_name="someone-else",
            role_ref="Common User",
        )
        with self.assertRaises(ProvisioningError):
            self.provisioner.provision(ImportedUser(name="erin", email="erin@example.com"))
        self.assertFalse(User.objects.filter(name="erin").exists())

    def test_invalid_user_raises(self):
        with self.assertRaises(ProvisioningError):
            self.provisioner.provision(ImportedUser(name="frank", email="not an email"))
        self.assertFalse(User.objects.filter(name="frank").exists())

    def test_exists_by_name_or_email(self):
        UserService().create(User(name="gina", email="gina@example.com"))
        self.assertTrue(self.provisioner.exists(ImportedUser(name="gina", email="x@example.com")))
        self.assertTrue(
            self.provisioner.exists(ImportedUser(name="georgina", email="gina@example.com"))
        )
        self.assertTrue(self.provisioner.exists(ImportedUser(name="gina@example.com")))
        self.assertFalse(self.provisioner.exists(ImportedUser(name="hank", email="hank@example.com")))


class ImportResultTestCase(SimpleTestCase):

    def test_success(self):
        self.assertTrue(ImportResult(success_count=2).success)
        self.assertTrue(ImportResult().success)
        self.assertFalse(ImportResult(success_count=2, failures=["bob"]).success)


class SyncRunnerTestCase(SimpleTestCase):

    def test_submit_runs_job_with_cancel_token(self):
        runner = SyncRunner(executor=InlineExecutor())
        seen = {}

        def job(value, cancel):
            seen["running"] = runner.is_running("dir-1")
            seen["cancel"] = cancel
            return value * 2

        handle = runner.submit("dir-1", job, 21)
        self.assertEqual(handle.result(), 42)
        self.assertTrue(handle.done())
        self.assertTrue(seen["running"])
        self.assertIsInstance(seen["cancel"], threading.Event)
        self.assertFalse(runner.is_running("dir-1"))

    def test_job_error_is_left_on_the_future(self):
        runner = SyncRunner(executor=InlineExecutor())

        def job(cancel):
            raise ValueError("boom")

        handle = runner.submit("dir-1", job)
        with self.assertRaises(ValueError):
            handle.result()
        self.assertFalse(runner.is_running("dir-1"))

    def test_second_submit_for_same_key_is_rejected(self):
        executor = ParkedExecutor()
        runner = SyncRunner(executor=executor)
        runner.submit("dir-1", lambda cancel: None)
        with self.assertRaises(SyncInProgress):
            runner.submit("dir-1", lambda cancel: None)
        runner.submit("dir-2", lambda cancel: None)
        self.assertEqual(len(executor.jobs), 2)

    def test_cancel(self):
        runner = SyncRunner(executor=ParkedExecutor())
        handle = runner.submit("dir-1", lambda cancel: None)
        self.assertTrue(runner.cancel("dir-1"))
        self.assertTrue(handle.cancel.is_set())
        self.assertTrue(handle.future.cancelled())
        self.assertFalse(runner.is_running("dir-1"))
        self.assertFalse(runner.cancel("dir-1"))
        runner.submit("dir-1", lambda cancel: None)

    def test_handle_holds_the_submitted_future(self):
        executor = ParkedExecutor()
        runner = SyncRunner(executor=executor)
        handle = runner.submit("dir-1", lambda cancel: None)
        self.assertIs(handle.future, executor.jobs[0][3])

    def test_cancel_before_start_calls_on_cancel(self):
        runner = SyncRunner(executor=ParkedExecutor())
        released = []
        runner.submit("dir-1", lambda cancel: None, on_cancel=lambda: released.append("dir-1"))
        self.assertTrue(runner.cancel("dir-1"))
        self.assertEqual(released, ["dir-1"])

    def test_on_cancel_is_not_called_for_finished_jobs(self):
        runner = SyncRunner(executor=InlineExecutor())
        released = []
        handle = runner.submit("dir-1", lambda cancel: 1, on_cancel=lambda: released.append("dir-1"))
        self.assertEqual(handle.result(), 1)
        self.assertFalse(runner.cancel("dir-1"))
        self.assertEqual(released, [])

    def test_cancel_running_job_sets_token(self):
        runner = SyncRunner()
        started = threading.Event()

        def job(cancel):
            started.set()
            return cancel.wait(timeout=5)

        handle = runner.submit("dir-1", job)
        self.assertTrue(started.wait(timeout=5))
        self.assertTrue(runner.cancel("dir-1"))
        self.assertTrue(handle.result(timeout=5))
        runner.executor.shutdown(wait=True)
        self.assertFalse(runner.is_running("dir-1"))


class UserServiceTestCase(TestCase):

    def setUp(self):
        self.users = UserService()
        self.users.create(User(name="alice", email="alice@example.com", type=User.LDAP))
        self.users.create(User(name="bob", email="bob@example.com"))

    def test_get_by_name_or_email(self):
        self.assertEqual(self.users.get_by_name_or_email("alice").name, "alice")
        self.assertEqual(self.users.get_by_name_or_email("bob@example.com").name, "bob")
        with self.assertRaises(NotFound):
            self.users.get_by_name_or_email("carol")

    def test_search(self):
        result = self.users.search(1, 10, [{"field": "type", "operator": "eq", "value": "LDAP"}])
        self.assertEqual([user.name for user in result.items], ["alice"])
        self.assertEqual(result.total, 1)
