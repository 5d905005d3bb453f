import unittest

from wikipublish.actions import (
    ActionStatus,
    CategoryAction,
    ClaimChange,
    ImageAction,
    ImageOperation,
    StructuredDataAction,
    StructuredDataProperty,
    WikidataAction,
    WikidataOperation,
    link_dependencies,
)
from wikipublish.errors import ActionStateError, RemoteApiError
from wikipublish.executor import ExecutionResult
from wikipublish.scheduler import PublishScheduler


class RecordingExecutor:
    def __init__(self, results=None, failures=None):
        self.results = results or {}
        self.failures = dict(failures or {})
        self.calls = []

    def execute(self, action, context=None):
        self.calls.append(action.id)
        if action.id in self.failures:
            raise self.failures[action.id]
        return self.results.get(action.id, ExecutionResult())


def category(action_id, depends_on=None):
    return CategoryAction(id=action_id, category_name=action_id, depends_on=depends_on)


class SchedulerOrderingTests(unittest.TestCase):
    def test_dependent_waits_for_dependency(self) -> None:
        executor = RecordingExecutor()
        scheduler = PublishScheduler([category("A"), category("B", depends_on="A")], executor)
        self.assertEqual([action.id for action in scheduler.ready_actions()], ["A"])
        self.assertEqual([action.id for action in scheduler.blocked_actions()], ["B"])
        with self.assertRaises(ActionStateError):
            scheduler.publish_one("B")
        self.assertEqual(executor.calls, [])

        scheduler.publish_one("A")
        self.assertIs(scheduler.get("A").status, ActionStatus.COMPLETED)
        self.assertIs(scheduler.get("B").status, ActionStatus.READY)
        self.assertEqual(scheduler.blocked_actions(), [])

    def test_completed_action_is_not_rerun(self) -> None:
        executor = RecordingExecutor()
        scheduler = PublishScheduler([category("A")], executor)
        scheduler.publish_one("A")
        with self.assertRaises(ActionStateError):
            scheduler.publish_one("A")
        self.assertEqual(executor.calls, ["A"])
        self.assertTrue(scheduler.is_complete)
        self.assertEqual(scheduler.queue(), [])

    def test_upload_page_id_unblocks_structured_data(self) -> None:
        upload = ImageAction(
            id="image-img-1",
            image_id="img-1",
            filename="Band_2025_01.jpg",
            action=ImageOperation.UPLOAD,
        )
        sdc = StructuredDataAction(
            id="sdc-img-1",
            image_id="img-1",
            properties=[StructuredDataProperty(property="P180", value=["Q10"])],
        )
        actions = link_dependencies([upload, sdc])
        executor = RecordingExecutor(results={"image-img-1": ExecutionResult(page_id=12345, created=True)})
        scheduler = PublishScheduler(actions, executor)
        self.assertIs(sdc.status, ActionStatus.PENDING)
        self.assertEqual(sdc.commons_page_id, 0)

        scheduler.publish_one("image-img-1")
        self.assertIs(sdc.status, ActionStatus.READY)
        self.assertEqual(sdc.commons_page_id, 12345)

    def test_created_entity_replaces_placeholder(self) -> None:
        create = WikidataAction(
            id="wikidata-new-person",
            entity_id="new-person",
            entity_type="person",
            entity_label="New Drummer",
            action=WikidataOperation.CREATE,
        )
        update = WikidataAction(
            id="wikidata-Q10-members",
            entity_id="new-person",
            entity_type="person",
            entity_label="New Drummer",
            action=WikidataOperation.UPDATE,
            changes=[ClaimChange(property="P373", new_value="New Drummer")],
            depends_on="wikidata-new-person",
        )
        executor = RecordingExecutor(results={"wikidata-new-person": ExecutionResult(entity_id="Q901", created=True)})
        scheduler = PublishScheduler([create, update], executor)
        scheduler.publish_one("wikidata-new-person")
        self.assertEqual(update.entity_id, "Q901")
        self.assertIs(update.status, ActionStatus.READY)

    def test_publish_all_runs_in_ready_order(self) -> None:
        actions = [category("A"), category("B", depends_on="A"), category("C"), category("D", depends_on="C")]
        executor = RecordingExecutor()
        scheduler = PublishScheduler(actions, executor)
        seen = []
        summary = scheduler.publish_all(progress=lambda action: seen.append(action.id))
        self.assertEqual(executor.calls, ["A", "C", "B", "D"])
        self.assertEqual(seen, executor.calls)
        self.assertEqual(summary.completed, ["A", "B", "C", "D"])
        self.assertFalse(summary.stopped)
        self.assertTrue(scheduler.is_complete)


class SchedulerFailureTests(unittest.TestCase):
    def test_failure_does_not_abort_loop(self) -> None:
        actions = [category("A"), category("B", depends_on="A"), category("C")]
        executor = RecordingExecutor(failures={"A": RemoteApiError("Permission denied", code="permissiondenied")})
        scheduler = PublishScheduler(actions, executor)
        with self.assertLogs("wikipublish.scheduler", level="ERROR"):
            summary = scheduler.publish_all()
        self.assertEqual(executor.calls, ["A", "C"])
        self.assertEqual(summary.failed, {"A": "permissiondenied: Permission denied"})
        self.assertEqual(summary.blocked, ["B"])
        self.assertEqual(summary.completed, ["C"])
        self.assertIs(scheduler.get("A").status, ActionStatus.ERROR)
        self.assertEqual([action.id for action in scheduler.queue()], ["A", "B"])
        self.assertFalse(scheduler.is_complete)

    def test_requeue_after_error(self) -> None:
        executor = RecordingExecutor(failures={"A": RemoteApiError("timeout")})
        scheduler = PublishScheduler([category("A"), category("B", depends_on="A")], executor)
        with self.assertLogs("wikipublish.scheduler", level="ERROR"):
            scheduler.publish_one("A")
        with self.assertRaises(ActionStateError):
            scheduler.publish_one("A")

        executor.failures.clear()
        scheduler.requeue("A")
        self.assertIs(scheduler.get("A").status, ActionStatus.READY)
        self.assertIsNone(scheduler.get("A").error)
        summary = scheduler.publish_all()
        self.assertEqual(summary.completed, ["A", "B"])
        self.assertEqual(executor.calls, ["A", "A", "B"])

    def test_requeue_rejects_non_error_actions(self) -> None:
        scheduler = PublishScheduler([category("A")], RecordingExecutor())
        with self.assertRaises(ActionStateError):
            scheduler.requeue("A")

    def test_programming_errors_propagate(self) -> None:
        executor = RecordingExecutor(failures={"A": TypeError("bad action")})
        scheduler = PublishScheduler([category("A")], executor)
        with self.assertRaises(TypeError):
            scheduler.publish_all()


class SchedulerControlTests(unittest.TestCase):
    def test_stop_prevents_further_actions(self) -> None:
        executor = RecordingExecutor()
        scheduler = PublishScheduler([category("A"), category("B"), category("C")], executor)
        summary = scheduler.publish_all(progress=lambda action: scheduler.stop())
        self.assertTrue(summary.stopped)
        self.assertEqual(executor.calls, ["A"])
        self.assertEqual([action.id for action in scheduler.ready_actions()], ["B", "C"])

        summary = scheduler.publish_all()
        self.assertFalse(summary.stopped)
        self.assertEqual(executor.calls, ["A", "B", "C"])

    def test_skip(self) -> None:
        executor = RecordingExecutor()
        scheduler = PublishScheduler([category("A"), category("B", depends_on="A"), category("C")], executor)
        scheduler.skip("C")
        scheduler.skip("B")
        summary = scheduler.publish_all()
        self.assertEqual(executor.calls, ["A"])
        self.assertEqual(summary.skipped, ["B", "C"])
        self.assertTrue(scheduler.is_complete)
        with self.assertRaises(ActionStateError):
            scheduler.skip("A")

    def test_publish_all_is_not_reentrant(self) -> None:
        scheduler = PublishScheduler([category("A"), category("B")], RecordingExecutor())
        errors = []

        def nested(action):
            try:
                scheduler.publish_all()
            except ActionStateError as exc:
                errors.append(exc)

        scheduler.publish_all(progress=nested)
        self.assertEqual(len(errors), 2)

    def test_status_listeners_are_isolated(self) -> None:
        scheduler = PublishScheduler([category("A")], RecordingExecutor())
        seen = []

        def broken(action):
            raise RuntimeError("listener bug")

        scheduler.subscribe(broken)
        unsubscribe = scheduler.subscribe(lambda action: seen.append(action.status))
        with self.assertLogs("wikipublish.scheduler", level="ERROR"):
            scheduler.publish_one("A")
        self.assertEqual(seen, [ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED])
        unsubscribe()

    def test_completed_actions_from_report_stay_done(self) -> None:
        done = category("A")
        done.status = ActionStatus.COMPLETED
        executor = RecordingExecutor()
        scheduler = PublishScheduler([done, category("B", depends_on="A")], executor)
        self.assertIs(scheduler.get("B").status, ActionStatus.READY)
        scheduler.publish_all()
        self.assertEqual(executor.calls, ["B"])

    def test_failed_actions_from_report_wait_for_requeue(self) -> None:
        failed = category("A")
        failed.status = ActionStatus.ERROR
        failed.error = "permissiondenied: Permission denied"
        executor = RecordingExecutor()
        scheduler = PublishScheduler([failed, category("B", depends_on="A"), category("C")], executor)
        self.assertIs(failed.status, ActionStatus.ERROR)
        self.assertEqual([action.id for action in scheduler.failed_actions()], ["A"])
        self.assertEqual([action.id for action in scheduler.blocked_actions()], ["B"])

        summary = scheduler.publish_all()
        self.assertEqual(executor.calls, ["C"])
        self.assertEqual(summary.failed, {"A": "permissiondenied: Permission denied"})
        self.assertEqual(summary.blocked, ["B"])

        scheduler.requeue("A")
        scheduler.publish_all()
        self.assertEqual(executor.calls, ["C", "A", "B"])
        self.assertTrue(scheduler.is_complete)

    def test_interrupted_action_from_report_starts_over(self) -> None:
        interrupted = category("A")
        interrupted.status = ActionStatus.IN_PROGRESS
        scheduler = PublishScheduler([interrupted], RecordingExecutor())
        self.assertIs(interrupted.status, ActionStatus.READY)

    def test_unknown_action_id(self) -> None:
        scheduler = PublishScheduler([category("A")], RecordingExecutor())
        with self.assertRaises(KeyError):
            scheduler.publish_one("missing")


if __name__ == "__main__":
    unittest.main()
