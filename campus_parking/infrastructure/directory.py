# File: campus_parking/infrastructure/directory.py
"""In-memory UserDirectoryPort used by tests, the CLI and local setups"""

from typing import Dict, Iterable, List, Optional
import logging
import threading

from ..domain.models import RegisteredVehicle, Role, VehiclePlate, VehicleType


class InMemoryUserDirectory:
    """Users, their roles and their registered vehicles"""

    def __init__(self):
        self._roles: Dict[str, Role] = {}
        self._vehicles: Dict[str, List[RegisteredVehicle]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def register_user(
        self,
        user_id: str,
        role: Role,
        vehicles: Optional[Iterable[RegisteredVehicle]] = None
    ) -> None:
        with self._lock:
            self._roles[user_id] = Role(role)
            self._vehicles.setdefault(user_id, [])
        for vehicle in vehicles or []:
            self.register_vehicle(user_id, vehicle.number, vehicle.vehicle_type, vehicle.active)
        self._logger.debug(f"Registered user {user_id} as {Role(role).value}")

    def register_vehicle(
        self,
        user_id: str,
        number: str,
        vehicle_type: VehicleType,
        active: bool = True
    ) -> RegisteredVehicle:
        vehicle = RegisteredVehicle(VehiclePlate(number).value, VehicleType(vehicle_type), active)
        with self._lock:
            if user_id not in self._roles:
                raise KeyError(f"Unknown user {user_id}")
            self._vehicles[user_id] = [v for v in self._vehicles[user_id] if v.number != vehicle.number]
            self._vehicles[user_id].append(vehicle)
        return vehicle

    def deactivate_vehicle(self, user_id: str, number: str) -> None:
        plate = VehiclePlate(number).value
        with self._lock:
            self._vehicles[user_id] = [
                RegisteredVehicle(v.number, v.vehicle_type, False) if v.number == plate else v
                for v in self._vehicles.get(user_id, [])
            ]

    # UserDirectoryPort

    def get_registered_vehicles(self, user_id: str) -> List[RegisteredVehicle]:
        with self._lock:
            return list(self._vehicles.get(user_id, []))

    def get_role(self, user_id: str) -> Role:
        with self._lock:
            role = self._roles.get(user_id)
        if role is None:
            raise KeyError(f"Unknown user {user_id}")
        return role
