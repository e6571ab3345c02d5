#!/usr/bin/env python3
"""
Print a summary of the seed automations file.

Usage:
    python scripts/print_automations.py [automations.yaml] [automations.schema.json]

Validates the file, builds every rule (so invariant violations surface
here rather than at deploy time) and lists triggers, conditions, actions
and schedules.
"""

import logging
import sys
from collections import Counter
from pathlib import Path

from crm_automation.config.settings import Settings, build_automations
from crm_automation.domain.schedule import ScheduledAutomationRule
from crm_automation.rules.actions import ActionExecutorRegistry, ActionServicesBundle, register_actions

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def print_automations_summary(settings: Settings) -> None:
    print("\n" + "=" * 80)
    print("AUTOMATIONS CONFIGURATION SUMMARY")
    print("=" * 80)

    rules = build_automations(settings.automations, settings.schedule_timezone)
    registry = register_actions(ActionExecutorRegistry(), ActionServicesBundle())

    triggers: Counter = Counter()
    action_types: Counter = Counter()
    unknown_actions = set()

    for idx, built in enumerate(rules, 1):
        scheduled = built if isinstance(built, ScheduledAutomationRule) else None
        rule = scheduled.automation if scheduled else built
        status = "ENABLED" if rule.is_enabled() else "DISABLED"
        triggers[rule.trigger_value] += 1

        print(f"\n[{idx}] {rule.name} [{status}] priority={rule.priority}")
        print(f"    Trigger: {rule.trigger_value}   Type: {rule.automation_type.value}")
        if rule.description:
            print(f"    Description: {rule.description}")
        if scheduled:
            print(f"    Schedule: {scheduled.schedule.to_dict()}")
            print(f"    Next execution: {scheduled.next_execution_at}")

        print(f"    Conditions ({len(rule.conditions)}):")
        for cond in rule.conditions:
            print(f"      - {cond.field} {cond.operator} {cond.value!r}")

        print(f"    Actions ({len(rule.actions)}):")
        for action in rule.actions:
            action_types[action.type] += 1
            if not registry.has(action.type):
                unknown_actions.add(action.type)
            delay = f" after {action.delay_minutes} min" if action.delay_minutes else ""
            print(f"      - {action.type}{delay} {action.params or ''}")

    print("\n" + "-" * 80)
    print(f"Total: {len(rules)} automation(s)")
    for trigger, count in sorted(triggers.items()):
        print(f"  trigger {trigger}: {count}")
    for action_type, count in sorted(action_types.items()):
        print(f"  action {action_type}: {count}")
    if unknown_actions:
        print(f"\n! No built-in executor for: {', '.join(sorted(unknown_actions))}")
    print("=" * 80 + "\n")


def main() -> int:
    project_root = Path(__file__).parent.parent
    rules_config = sys.argv[1] if len(sys.argv) > 1 else str(project_root / "config" / "automations.yaml")
    rules_schema = (
        sys.argv[2] if len(sys.argv) > 2 else str(project_root / "config" / "automations.schema.json")
    )

    try:
        settings = Settings()
        settings.load_automations(rules_config, rules_schema)
        print_automations_summary(settings)
        return 0
    except Exception as e:
        logger.error(f"Failed to load automations: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
