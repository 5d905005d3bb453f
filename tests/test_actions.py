import json
import tempfile
import unittest
from pathlib import Path

from wikipublish.actions import (
    ActionStatus,
    CategoryAction,
    ImageAction,
    ImageOperation,
    StructuredDataAction,
    WikidataAction,
    WikidataOperation,
    dump_plan,
    load_plan,
    load_schema,
    write_plan,
)
from wikipublish.errors import PlanValidationError


class PlanLoadingTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.schema = load_schema()

    def _base_plan(self) -> dict:
        return {
            "actions": [
                {
                    "type": "category",
                    "id": "category-Players_of_Arsenal",
                    "category_name": "Players of Arsenal",
                    "description": "Players of [[Arsenal]].",
                },
                {
                    "type": "wikidata",
                    "id": "wikidata-q42-p373",
                    "entity_id": "q42",
                    "entity_type": "person",
                    "entity_label": "Douglas Adams",
                    "action": "update",
                    "changes": [{"property": "p373", "new_value": "Douglas Adams"}],
                },
                {
                    "type": "image",
                    "id": "image-img-1",
                    "image_id": "img-1",
                    "filename": "Band_2025_01.jpg",
                    "action": "upload",
                    "metadata": {"description": "Band on stage", "categories": ["Concerts"]},
                },
                {
                    "type": "structured-data",
                    "id": "sdc-img-1",
                    "image_id": "img-1",
                    "properties": [{"property": "P180", "value": [{"qid": "Q42"}]}],
                },
            ]
        }

    def test_valid_plan(self) -> None:
        actions = load_plan(self._base_plan(), schema=self.schema)
        self.assertEqual([type(action) for action in actions], [CategoryAction, WikidataAction, ImageAction, StructuredDataAction])
        self.assertTrue(all(action.status is ActionStatus.PENDING for action in actions))
        wikidata = actions[1]
        self.assertEqual(wikidata.entity_id, "Q42")
        self.assertIs(wikidata.action, WikidataOperation.UPDATE)
        self.assertEqual(wikidata.changes[0].property, "P373")
        self.assertFalse(wikidata.changes[0].submitted)
        self.assertIs(actions[2].action, ImageOperation.UPLOAD)
        self.assertEqual(actions[2].metadata.categories, ["Concerts"])

    def test_structured_data_is_linked_to_upload(self) -> None:
        actions = load_plan(self._base_plan(), schema=self.schema)
        self.assertEqual(actions[3].depends_on, "image-img-1")
        self.assertIsNone(actions[0].depends_on)

    def test_plan_from_json_string_and_path(self) -> None:
        raw = json.dumps(self._base_plan())
        self.assertEqual(len(load_plan(raw, schema=self.schema)), 4)
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "plan.json"
            path.write_text(raw, encoding="utf-8")
            self.assertEqual(len(load_plan(path, schema=self.schema)), 4)
            self.assertEqual(len(load_plan(str(path), schema=self.schema)), 4)

    def test_invalid_json(self) -> None:
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan("{not json", schema=self.schema)
        self.assertEqual(ctx.exception.code, "INVALID_JSON")

    def test_missing_file(self) -> None:
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan("/nonexistent/plan.json", schema=self.schema)
        self.assertEqual(ctx.exception.code, "UNREADABLE")

    def test_schema_violation(self) -> None:
        plan = self._base_plan()
        del plan["actions"][0]["category_name"]
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "SCHEMA_VIOLATION")
        self.assertEqual(ctx.exception.details["path"][:2], ["actions", 0])

    def test_unknown_action_type(self) -> None:
        plan = self._base_plan()
        plan["actions"][0]["type"] = "template"
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "SCHEMA_VIOLATION")

    def test_plain_string_caption_is_rejected(self) -> None:
        plan = self._base_plan()
        plan["actions"][3]["properties"].append({"property": "captions", "value": "A band on stage"})
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "SCHEMA_VIOLATION")

    def test_single_depicts_dict_is_rejected(self) -> None:
        plan = self._base_plan()
        plan["actions"][3]["properties"][0]["value"] = {"qid": "Q5"}
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "SCHEMA_VIOLATION")

    def test_structured_data_values_are_normalized(self) -> None:
        plan = self._base_plan()
        plan["actions"][3]["properties"] = [
            {"property": "p180", "value": ["q10", {"qid": "q42", "label": "Douglas Adams"}]},
            {"property": "Labels", "value": [{"language": "en", "text": "Band on stage"}]},
        ]
        sdc = load_plan(plan, schema=self.schema)[3]
        self.assertEqual(sdc.properties[0].property, "P180")
        self.assertEqual(sdc.properties[0].value, ["Q10", {"qid": "Q42", "label": "Douglas Adams"}])
        self.assertEqual(sdc.properties[1].property, "labels")

    def test_update_needs_entity(self) -> None:
        plan = self._base_plan()
        plan["actions"][1]["entity_id"] = "new-person"
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "INVALID_ID")

    def test_update_may_depend_on_creation(self) -> None:
        plan = self._base_plan()
        plan["actions"][1]["entity_id"] = "new-person"
        plan["actions"][1]["depends_on"] = "wikidata-new-person"
        plan["actions"].append(
            {
                "type": "wikidata",
                "id": "wikidata-new-person",
                "entity_id": "new-person",
                "entity_type": "person",
                "entity_label": "New Person",
                "action": "create",
            }
        )
        actions = load_plan(plan, schema=self.schema)
        self.assertEqual(actions[1].depends_on, "wikidata-new-person")

    def test_self_dependency(self) -> None:
        plan = self._base_plan()
        plan["actions"][0]["depends_on"] = "category-Players_of_Arsenal"
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "SELF_DEPENDENCY")

    def test_unknown_dependency(self) -> None:
        plan = self._base_plan()
        plan["actions"][1]["depends_on"] = "category-missing"
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "UNKNOWN_DEPENDENCY")

    def test_dependency_chain(self) -> None:
        plan = self._base_plan()
        plan["actions"][2]["depends_on"] = "category-Players_of_Arsenal"
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "DEPENDENCY_CHAIN")

    def test_cycle_is_rejected(self) -> None:
        plan = self._base_plan()
        plan["actions"][0]["depends_on"] = "wikidata-q42-p373"
        plan["actions"][1]["depends_on"] = "category-Players_of_Arsenal"
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "DEPENDENCY_CHAIN")

    def test_duplicate_ids(self) -> None:
        plan = self._base_plan()
        plan["actions"][1]["id"] = "category-Players_of_Arsenal"
        with self.assertRaises(PlanValidationError) as ctx:
            load_plan(plan, schema=self.schema)
        self.assertEqual(ctx.exception.code, "DUPLICATE_ID")

    def test_dump_keeps_status_and_reloads(self) -> None:
        actions = load_plan(self._base_plan(), schema=self.schema)
        actions[0].status = ActionStatus.COMPLETED
        actions[1].status = ActionStatus.ERROR
        actions[1].error = "modification-failed: Claim rejected"
        actions[1].changes[0].submitted = True
        dumped = dump_plan(actions)
        self.assertIn("generated_at", dumped)
        self.assertEqual(dumped["actions"][0]["type"], "category")
        self.assertEqual(dumped["actions"][0]["status"], "completed")
        self.assertEqual(dumped["actions"][1]["action"], "update")

        reloaded = load_plan(json.loads(json.dumps(dumped)), schema=self.schema)
        self.assertIs(reloaded[0].status, ActionStatus.COMPLETED)
        self.assertEqual(reloaded[1].error, "modification-failed: Claim rejected")
        self.assertTrue(reloaded[1].changes[0].submitted)
        self.assertEqual(reloaded[3].depends_on, "image-img-1")

    def test_write_plan(self) -> None:
        actions = load_plan(self._base_plan(), schema=self.schema)
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "out" / "report.json"
            write_plan(actions, path)
            self.assertEqual(len(load_plan(path)), 4)


if __name__ == "__main__":
    unittest.main()
