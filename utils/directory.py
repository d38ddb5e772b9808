import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from models.schema import Employee, Group, Role


class EmployeeDirectory:
    """Known employees with their display name and punch group."""

    def __init__(self, employees: Iterable[Employee] = ()):
        self._employees = {e.employee_id: e for e in employees}

    @classmethod
    def from_file(cls, path: str) -> "EmployeeDirectory":
        users_path = Path(path)
        if not users_path.exists():
            logging.warning(f"Employee directory {users_path} not found; every employee is treated as non-therapist")
            return cls()
        with open(users_path, "r", encoding="utf-8") as f:
            raw = json.load(f) or []
        directory = cls(Employee.model_validate(entry) for entry in raw)
        logging.info(f"Loaded {len(directory._employees)} employees from {users_path}")
        return directory

    def get(self, employee_id: str) -> Optional[Employee]:
        return self._employees.get(employee_id)

    def group_of(self, employee_id: str) -> Group:
        employee = self._employees.get(employee_id)
        return employee.group if employee else Group.NON_THERAPIST

    def list_employees(self) -> List[Employee]:
        employees = [e for e in self._employees.values() if e.role == Role.EMPLOYEE]
        return sorted(employees, key=lambda e: e.display_name.lower())
