"""Tests for definition loading, legacy repair and step config parsing."""

import pytest

from core.constants import (
    Aggregation,
    NotificationChannelType,
    OnItemError,
    StepType,
    StrategyTarget,
    TriggerType,
)
from core.exceptions import ValidationError
from workflow.models import StepDefinition, parse_step_config
from workflow.validation import (
    check_structure,
    load_definition,
    repair_legacy_steps,
    validate_for_run,
    validate_trigger,
)


def _loop(step_id, children):
    return {"id": step_id, "type": "for_each", "config": {"sourceVariable": "items", "childSteps": children}}


def _log(step_id):
    return {"id": step_id, "type": "log_event", "config": {"message": "hi"}}


@pytest.mark.unit
class TestStructure:
    def test_valid_tree(self):
        check_structure([_log("a"), _loop("b", [_log("c")])])

    def test_duplicate_ids_across_children(self):
        with pytest.raises(ValidationError) as exc:
            check_structure([_log("a"), _loop("b", [_log("a")])])
        assert "Duplicate step id 'a'" in exc.value.message

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc:
            check_structure([{"id": "x", "type": "http_request", "config": {}}])
        assert "unknown type" in exc.value.message

    def test_missing_id(self):
        with pytest.raises(ValidationError):
            check_structure([{"type": "log_event", "config": {}}])

    def test_config_must_be_object(self):
        with pytest.raises(ValidationError):
            check_structure([{"id": "x", "type": "log_event", "config": "nope"}])

    def test_loop_nesting_limit(self):
        steps = [_loop("l1", [_loop("l2", [_loop("l3", [_log("x")])])])]
        check_structure(steps, max_nesting=3)
        with pytest.raises(ValidationError) as exc:
            check_structure(steps, max_nesting=2)
        assert "maximum loop nesting" in exc.value.message


@pytest.mark.unit
class TestLegacyRepair:
    def test_strategy_update_gets_key_result_type(self):
        steps = [{"id": "s", "type": "strategy_update", "config": {"targetId": "kr-1", "value": 1}}]
        repaired = repair_legacy_steps(steps)
        assert repaired[0]["config"]["type"] == "key_result"
        assert "type" not in steps[0]["config"]

    def test_repairs_inside_loops(self):
        child = {"id": "s", "type": "strategy_update", "config": {"targetId": "kr-1", "value": 1}}
        repaired = repair_legacy_steps([_loop("l", [child])])
        assert repaired[0]["config"]["childSteps"][0]["config"]["type"] == "key_result"

    def test_explicit_type_is_kept(self):
        steps = [{"id": "s", "type": "strategy_update", "config": {"type": "objective"}}]
        assert repair_legacy_steps(steps)[0]["config"]["type"] == "objective"


@pytest.mark.unit
class TestDefinitions:
    def test_load_definition_parses_camel_case(self):
        definition = load_definition({
            "id": "wf", "name": "W", "isEnabled": False, "triggerType": "webhook",
            "triggerConfig": {"identifier": "hook"}, "steps": [_log("a")],
        })
        assert definition.is_enabled is False
        assert definition.trigger_type == TriggerType.WEBHOOK
        assert definition.steps[0].type == StepType.LOG_EVENT

    def test_numeric_step_ids_become_strings(self):
        definition = load_definition({"id": "wf", "name": "W", "steps": [
            {"id": 7, "type": "log_event", "config": {"message": "x"}},
        ]})
        assert definition.steps[0].id == "7"

    def test_no_steps_cannot_run(self):
        definition = load_definition({"id": "wf", "name": "Empty", "steps": []})
        with pytest.raises(ValidationError) as exc:
            validate_for_run(definition)
        assert "has no steps" in exc.value.message

    def test_webhook_requires_identifier(self):
        with pytest.raises(ValidationError):
            validate_trigger(TriggerType.WEBHOOK, {})
        validate_trigger(TriggerType.WEBHOOK, {"identifier": "new-lead"})

    def test_schedule_requires_cron_or_frequency(self):
        with pytest.raises(ValidationError):
            validate_trigger(TriggerType.SCHEDULE, {})
        validate_trigger(TriggerType.SCHEDULE, {"frequency": "daily", "time": "08:30"})


@pytest.mark.unit
class TestStepConfigs:
    def _parse(self, step_type, config):
        return parse_step_config(StepDefinition(id="s", type=step_type, config=config))

    def test_strategy_update_aliases(self):
        config = self._parse("strategy_update", {
            "type": "objective", "targetId": 12, "updateType": "increment", "value": "{x}",
        })
        assert config.target_type == StrategyTarget.OBJECTIVE
        assert config.target_id == "12"

    def test_strategy_update_needs_target(self):
        with pytest.raises(ValidationError) as exc:
            self._parse("strategy_update", {"type": "key_result", "value": 1})
        assert "targetId or targetIdVariable is required" in exc.value.message

    def test_strategy_update_needs_value(self):
        with pytest.raises(ValidationError):
            self._parse("strategy_update", {"type": "key_result", "targetId": "kr"})

    def test_data_query_aggregation_field(self):
        with pytest.raises(ValidationError) as exc:
            self._parse("data_source_query", {"sourceTable": "work_items", "aggregation": "sum"})
        assert "aggregationField" in exc.value.message
        config = self._parse("data_source_query", {
            "sourceTable": "data_records", "aggregation": "sum", "aggregationField": "amount",
        })
        assert config.aggregation == Aggregation.SUM

    def test_notification_legacy_field_names(self):
        config = self._parse("notification", {
            "type": "slack", "recipient": "#ops", "subject": "Hi", "template": "Body",
        })
        assert config.channel == NotificationChannelType.SLACK
        assert config.title == "Hi"
        assert config.message == "Body"

    def test_for_each_strips_braces(self):
        config = self._parse("for_each", {"sourceVariable": "{customers}", "onItemError": "continue"})
        assert config.source_variable == "customers"
        assert config.on_item_error == OnItemError.CONTINUE

    def test_unknown_filter_operator(self):
        with pytest.raises(ValidationError):
            self._parse("data_source_query", {
                "sourceTable": "work_items",
                "filters": [{"field": "status", "operator": "like", "value": "x"}],
            })

    def test_integration_requires_action(self):
        with pytest.raises(ValidationError) as exc:
            self._parse("integration_action", {"integrationId": 3})
        assert "action" in exc.value.message
