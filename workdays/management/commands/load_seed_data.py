import json
from pathlib import Path
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from workdays.models import BlockerType, Employee, Project, ScheduleNode, ScheduleTask, Workday


class Command(BaseCommand):
    help = "Load projects, schedule, people and blocker types from JSON files in seed_data/."

    def add_arguments(self, parser):
        parser.add_argument(
            "--truncate",
            action="store_true",
            help="Delete existing data (workdays included) before loading.",
        )
        parser.add_argument(
            "--dir",
            default="seed_data",
            help="Directory containing JSON files (default: seed_data).",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        base_dir = Path(options["dir"]).resolve()

        # 1. optional clean, children first because of PROTECT foreign keys
        if options["truncate"]:
            self.stdout.write("Deleting existing records…")
            Workday.objects.all().delete()
            ScheduleTask.objects.all().delete()
            ScheduleNode.objects.all().delete()
            Project.objects.all().delete()
            Employee.objects.all().delete()
            BlockerType.objects.all().delete()

        # 2. load json helpers
        def load_json(name):
            path = base_dir / f"{name}.json"
            if not path.exists():
                raise CommandError(f"{path} not found")
            with open(path) as f:
                return json.load(f)

        projects       = load_json("projects")
        employees      = load_json("employees")
        schedule_nodes = load_json("schedule_nodes")
        schedule_tasks = load_json("schedule_tasks")
        blocker_types  = load_json("blocker_types")

        # 3. create records (bulk for speed)
        Project.objects.bulk_create(
            [Project(id=p["id"], code=p["code"], name=p["name"]) for p in projects],
            ignore_conflicts=True,
        )
        Employee.objects.bulk_create(
            [Employee(id=e["id"], name=e["name"], email=e.get("email", "")) for e in employees],
            ignore_conflicts=True,
        )
        ScheduleNode.objects.bulk_create(
            [
                ScheduleNode(
                    id=n["id"],
                    project_id=n["project_id"],
                    name=n["name"],
                    planned_hours=n.get("planned_hours", 0),
                )
                for n in schedule_nodes
            ],
            ignore_conflicts=True,
        )
        ScheduleTask.objects.bulk_create(
            [
                ScheduleTask(
                    id=t["id"],
                    node_id=t["node_id"],
                    name=t["name"],
                    planned_hours=t.get("planned_hours", 0),
                    completion_pct=t.get("completion_pct", 0),
                )
                for t in schedule_tasks
            ],
            ignore_conflicts=True,
        )
        BlockerType.objects.bulk_create(
            [
                BlockerType(id=b["id"], name=b["name"], is_active=b.get("is_active", True))
                for b in blocker_types
            ],
            ignore_conflicts=True,
        )

        self.stdout.write(self.style.SUCCESS("✅  Seed data loaded successfully"))
