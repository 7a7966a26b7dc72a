"""
Snapshot diff engine.

Compares two network snapshots and produces a sparse, classified
SnapshotDiff: joined/left/changed/inactive devices, with per-device port,
service and property changes. Pure and synchronous; the same inputs always
give the same output.
"""

from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional, Tuple
import ipaddress

from netdelta.exceptions import ValidationError
from netdelta.logging_config import get_logger
from netdelta.models.delta_report import (
    ChangeType,
    DeviceDiff,
    DiffSummary,
    PortChangeType,
    PortDiff,
    PropertyChange,
    ServiceChangeType,
    ServiceDiff,
    SnapshotDiff,
)
from netdelta.models.device import Device
from netdelta.models.snapshot import NetworkSnapshot

logger = get_logger(__name__)

# Scalar device fields compared for property changes (last_seen never is)
DEVICE_PROPERTIES = (
    ("hostname", lambda d: d.hostname),
    ("vendor", lambda d: d.vendor),
    ("mac", lambda d: normalize_mac(d.mac)),
    ("device_type", lambda d: d.device_type),
    ("is_active", lambda d: d.is_active),
    ("os.name", lambda d: d.os_info.name if d.os_info else None),
    ("os.version", lambda d: d.os_info.version if d.os_info else None),
    ("os.accuracy", lambda d: d.os_info.accuracy if d.os_info else None),
)

MAC_HOSTS_FIELD = "mac_address_hosts"

SECURITY_SENSITIVE_PORTS = (21, 22, 23, 80, 443, 3306, 3389, 5432)


def normalize_mac(mac: Optional[str]) -> Optional[str]:
    if not mac:
        return None
    return mac.strip().upper().replace("-", ":")


def address_sort_key(address: str) -> Tuple:
    """Numeric ordering for IP addresses, string ordering for anything else"""
    try:
        ip = ipaddress.ip_address(address)
        return (0, ip.version, int(ip), "")
    except ValueError:
        return (1, 0, 0, address)


class DeltaService:
    """Service for computing diffs between network snapshots"""

    def compute_diff(
        self, previous: NetworkSnapshot, current: NetworkSnapshot
    ) -> SnapshotDiff:
        """
        Compute the classified difference between two snapshots.

        Args:
            previous: The older snapshot
            current: The newer snapshot

        Returns:
            SnapshotDiff: Sparse diff; unchanged devices are omitted

        Raises:
            ValidationError: If a snapshot or its devices are missing, an
                address appears twice in one snapshot, or the snapshots are
                not strictly ordered by timestamp
        """
        self._validate_pair(previous, current)

        previous_devices = self._index_devices(previous)
        current_devices = self._index_devices(current)
        mac_changes = self._hardware_address_changes(previous_devices, current_devices)

        device_changes = []
        addresses = set(previous_devices) | set(current_devices)

        for address in sorted(addresses, key=address_sort_key):
            device_diff = self._compare_devices(
                address,
                previous_devices.get(address),
                current_devices.get(address),
                mac_changes.get(address, ()),
            )
            if device_diff is not None:
                device_changes.append(device_diff)

        summary = self._summarize(device_changes)
        diff = SnapshotDiff(
            from_snapshot=previous.id,
            to_snapshot=current.id,
            timestamp=current.timestamp,
            summary=summary,
            device_changes=tuple(device_changes),
        )

        logger.info(
            f"Diff {previous.id} -> {current.id}: {summary.total_changes} total changes "
            f"(+{summary.devices_added} / -{summary.devices_removed} / "
            f"~{summary.devices_changed} devices)"
        )
        return diff

    @staticmethod
    def _validate_pair(previous: NetworkSnapshot, current: NetworkSnapshot):
        if previous is None or current is None:
            raise ValidationError("Both snapshots are required to compute a diff")

        for label, snapshot in (("previous", previous), ("current", current)):
            if snapshot.devices is None:
                raise ValidationError(
                    f"The {label} snapshot {snapshot.id} has no device collection"
                )
            if snapshot.timestamp is None:
                raise ValidationError(
                    f"The {label} snapshot {snapshot.id} has no timestamp"
                )

        try:
            ordered = current.timestamp > previous.timestamp
        except TypeError as e:
            # naive vs aware datetimes
            raise ValidationError(f"Snapshot timestamps are not comparable: {e}") from e

        if not ordered:
            raise ValidationError(
                f"Snapshot {current.id} ({current.timestamp.isoformat()}) is not newer "
                f"than snapshot {previous.id} ({previous.timestamp.isoformat()})"
            )

    @staticmethod
    def _index_devices(snapshot: NetworkSnapshot) -> Dict[str, Device]:
        index = {}
        for device in snapshot.devices:
            if device.address in index:
                raise ValidationError(
                    f"Snapshot {snapshot.id} contains device {device.address} twice"
                )
            index[device.address] = device
        return index

    @staticmethod
    def _hardware_address_changes(
        previous_devices: Dict[str, Device], current_devices: Dict[str, Device]
    ) -> Dict[str, List[PropertyChange]]:
        """
        Flag hardware addresses whose set of reporting addresses changed.

        A MAC seen at different addresses in the two snapshots is not treated
        as a device move; every address involved gets a PropertyChange
        listing the old and new address sets. A MAC that first appears at
        several addresses at once is flagged the same way.
        """
        previous_by_mac = defaultdict(set)
        current_by_mac = defaultdict(set)
        for address, device in previous_devices.items():
            mac = normalize_mac(device.mac)
            if mac:
                previous_by_mac[mac].add(address)
        for address, device in current_devices.items():
            mac = normalize_mac(device.mac)
            if mac:
                current_by_mac[mac].add(address)

        changes = defaultdict(list)
        for mac in sorted(set(previous_by_mac) | set(current_by_mac)):
            before = previous_by_mac.get(mac, set())
            after = current_by_mac.get(mac, set())
            if before == after:
                continue
            # A MAC seen at one address on one side only is an ordinary join or leave
            if not (before and after) and len(before | after) < 2:
                continue

            change = PropertyChange(
                field=MAC_HOSTS_FIELD,
                old_value=tuple(sorted(before, key=address_sort_key)),
                new_value=tuple(sorted(after, key=address_sort_key)),
            )
            for address in before | after:
                changes[address].append(change)

        return changes

    def _compare_devices(
        self,
        address: str,
        previous: Optional[Device],
        current: Optional[Device],
        mac_changes: Iterable[PropertyChange],
    ) -> Optional[DeviceDiff]:
        if previous is None:
            return DeviceDiff(
                address=address,
                change_type=ChangeType.DEVICE_JOINED,
                device_added=current,
                property_changes=tuple(mac_changes),
            )

        if current is None:
            return DeviceDiff(
                address=address,
                change_type=ChangeType.DEVICE_LEFT,
                device_removed=previous,
                property_changes=tuple(mac_changes),
            )

        port_changes = self._compare_ports(previous, current)
        service_changes = self._compare_services(previous, current)
        property_changes = self._compare_properties(previous, current)
        property_changes.extend(mac_changes)

        if not (port_changes or service_changes or property_changes):
            return None

        if previous.is_active and not current.is_active:
            change_type = ChangeType.DEVICE_INACTIVE
        else:
            change_type = ChangeType.DEVICE_CHANGED

        return DeviceDiff(
            address=address,
            change_type=change_type,
            port_changes=tuple(port_changes),
            service_changes=tuple(service_changes),
            property_changes=tuple(property_changes),
        )

    @staticmethod
    def _compare_ports(previous: Device, current: Device) -> List[PortDiff]:
        previous_ports = {}
        current_ports = {}
        for port in previous.ports:
            previous_ports.setdefault(port.key, port)
        for port in current.ports:
            current_ports.setdefault(port.key, port)

        changes = []
        for key in sorted(set(previous_ports) | set(current_ports)):
            protocol, number = key
            old = previous_ports.get(key)
            new = current_ports.get(key)

            if old is None:
                changes.append(
                    PortDiff(number, protocol, PortChangeType.ADDED, new_state=new.state)
                )
            elif new is None:
                changes.append(
                    PortDiff(
                        number, protocol, PortChangeType.REMOVED, old_state=old.state
                    )
                )
            elif old.state != new.state:
                changes.append(
                    PortDiff(
                        number,
                        protocol,
                        PortChangeType.STATE_CHANGED,
                        old_state=old.state,
                        new_state=new.state,
                    )
                )

        return changes

    @staticmethod
    def _compare_services(previous: Device, current: Device) -> List[ServiceDiff]:
        previous_services = {}
        current_services = {}
        for service in previous.services:
            previous_services.setdefault(service.port, service)
        for service in current.services:
            current_services.setdefault(service.port, service)

        changes = []
        for port in sorted(set(previous_services) | set(current_services)):
            old = previous_services.get(port)
            new = current_services.get(port)

            if old is None:
                changes.append(
                    ServiceDiff(port, ServiceChangeType.ADDED, new_service=new)
                )
            elif new is None:
                changes.append(
                    ServiceDiff(port, ServiceChangeType.REMOVED, old_service=old)
                )
            elif old.product != new.product or old.version != new.version:
                changes.append(
                    ServiceDiff(
                        port,
                        ServiceChangeType.VERSION_CHANGED,
                        old_service=old,
                        new_service=new,
                    )
                )

        return changes

    @staticmethod
    def _compare_properties(previous: Device, current: Device) -> List[PropertyChange]:
        changes = []
        for name, getter in DEVICE_PROPERTIES:
            old_value = getter(previous)
            new_value = getter(current)
            if old_value != new_value:
                changes.append(PropertyChange(name, old_value, new_value))
        return changes

    @staticmethod
    def _summarize(device_changes: List[DeviceDiff]) -> DiffSummary:
        counts = Counter(d.change_type for d in device_changes)
        devices_added = counts[ChangeType.DEVICE_JOINED]
        devices_removed = counts[ChangeType.DEVICE_LEFT]
        devices_changed = (
            counts[ChangeType.DEVICE_CHANGED] + counts[ChangeType.DEVICE_INACTIVE]
        )
        ports_changed = sum(len(d.port_changes) for d in device_changes)
        services_changed = sum(len(d.service_changes) for d in device_changes)

        return DiffSummary(
            devices_added=devices_added,
            devices_removed=devices_removed,
            devices_changed=devices_changed,
            ports_changed=ports_changed,
            services_changed=services_changed,
            total_changes=(
                devices_added
                + devices_removed
                + devices_changed
                + ports_changed
                + services_changed
            ),
        )

    def compare_series(self, snapshots: Iterable[NetworkSnapshot]) -> List[SnapshotDiff]:
        """
        Diff each consecutive pair of a snapshot time series.

        Args:
            snapshots: Snapshots in any order; they are sorted by timestamp

        Returns:
            List[SnapshotDiff]: One diff per valid consecutive pair. Pairs
            that fail validation are logged and skipped.
        """
        ordered = sorted(snapshots, key=lambda s: s.timestamp)
        diffs = []

        for previous, current in zip(ordered, ordered[1:]):
            try:
                diffs.append(self.compute_diff(previous, current))
            except ValidationError as e:
                logger.warning(
                    f"Skipping diff between {previous.id} and {current.id}: {e}"
                )

        return diffs

    @staticmethod
    def summarize_diff(diff: SnapshotDiff) -> str:
        """One-line human readable summary of a diff"""
        summary = diff.summary
        parts = []

        def plural(count, singular, suffix):
            return f"{count} {singular}{'s' if count > 1 else ''} {suffix}".strip()

        if summary.devices_added:
            parts.append(plural(summary.devices_added, "device", "added"))
        if summary.devices_removed:
            parts.append(plural(summary.devices_removed, "device", "removed"))
        if summary.devices_changed:
            parts.append(plural(summary.devices_changed, "device", "changed"))
        if summary.ports_changed:
            parts.append(plural(summary.ports_changed, "port change", ""))
        if summary.services_changed:
            parts.append(plural(summary.services_changed, "service change", ""))

        if not parts:
            return "No changes detected"
        return ", ".join(parts)

    @staticmethod
    def get_change_severity(diff: SnapshotDiff) -> str:
        """
        Rate a diff as "low", "medium" or "high".

        High: many devices joined/left, a new device exposing 10+ open ports,
        or a security-sensitive port newly appearing on a known device.
        """
        summary = diff.summary

        if summary.devices_added >= 5 or summary.devices_removed >= 3:
            return "high"

        for device_diff in diff.device_changes:
            added = device_diff.device_added
            if added is not None and len(added.open_ports) >= 10:
                return "high"

            for port_change in device_diff.port_changes:
                if (
                    port_change.change_type == PortChangeType.ADDED
                    and port_change.port in SECURITY_SENSITIVE_PORTS
                ):
                    return "high"

        if (
            summary.total_changes >= 10
            or summary.devices_added >= 2
            or summary.ports_changed >= 5
        ):
            return "medium"

        return "low"

    @staticmethod
    def get_change_summary(diffs: Iterable[SnapshotDiff], top: int = 5) -> Dict:
        """
        Aggregate a series of diffs.

        Args:
            diffs: Diffs to aggregate
            top: How many of the most active hosts / most changed ports to list

        Returns:
            Dict: Totals, number of diffs with changes, and the most active
            hosts and most changed ports
        """
        diffs = list(diffs)
        totals = Counter()
        host_activity = Counter()
        port_changes = Counter()

        for diff in diffs:
            totals.update(diff.summary.to_dict())
            for device_diff in diff.device_changes:
                host_activity[device_diff.address] += 1
                for port_change in device_diff.port_changes:
                    port_changes[port_change.port] += 1

        def most_common(counter, label):
            # Ties broken by key so the output is stable
            ranked = sorted(counter.items(), key=lambda item: (-item[1], str(item[0])))
            return [{label: key, "change_count": count} for key, count in ranked[:top]]

        return {
            "total_diffs": len(diffs),
            "diffs_with_changes": sum(1 for d in diffs if d.summary.has_changes()),
            "summary": {
                "total_devices_added": totals["devices_added"],
                "total_devices_removed": totals["devices_removed"],
                "total_devices_changed": totals["devices_changed"],
                "total_ports_changed": totals["ports_changed"],
                "total_services_changed": totals["services_changed"],
            },
            "trend": {
                "most_active_hosts": most_common(host_activity, "host"),
                "most_changed_ports": most_common(port_changes, "port"),
            },
        }


delta_service = DeltaService()
