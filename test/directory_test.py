import json

from models.schema import Group
from utils.directory import EmployeeDirectory


def test_missing_file_gives_empty_directory(tmp_path):
    directory = EmployeeDirectory.from_file(str(tmp_path / "users.json"))
    assert directory.list_employees() == []
    assert directory.group_of("T001") == Group.NON_THERAPIST


def test_load_and_sort_by_name(tmp_path):
    path = tmp_path / "users.json"
    path.write_text(json.dumps([
        {"employee_id": "E002", "name": "zoe"},
        {"employee_id": "T001", "name": "Adam", "group": "therapist"},
        {"employee_id": "E003"},
    ]), encoding="utf-8")

    directory = EmployeeDirectory.from_file(str(path))

    assert [e.display_name for e in directory.list_employees()] == ["Adam", "E003", "zoe"]
    assert directory.group_of("T001") == Group.THERAPIST
    assert directory.get("E404") is None
