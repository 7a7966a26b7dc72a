"""
Scan executors.

A ScanExecutor turns a ScanRequest into a list of normalized Device records
or raises ExecutionError. NmapScanExecutor drives nmap through python-nmap;
the host normalization is a plain function so it can be exercised without
an nmap binary.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional
import ipaddress
import re
import time

import nmap

from netdelta.exceptions import ExecutionError
from netdelta.logging_config import get_logger
from netdelta.models.device import Device, OSInfo, Port, Service
from netdelta.models.scan import ScanProfile, ScanRequest

logger = get_logger(__name__)

PROFILE_ARGUMENTS = {
    ScanProfile.DISCOVERY: "-sn",
    ScanProfile.QUICK: "-T4 -F",
    ScanProfile.COMPREHENSIVE: "-sV -O -T4",
}

# Fallback service names for open ports nmap did not label
COMMON_SERVICES = {
    21: "ftp",
    22: "ssh",
    23: "telnet",
    25: "smtp",
    53: "domain",
    80: "http",
    110: "pop3",
    143: "imap",
    443: "https",
    445: "microsoft-ds",
    3306: "mysql",
    3389: "ms-wbt-server",
    5432: "postgresql",
    8080: "http-proxy",
}

_VERSION_PATTERNS = (
    re.compile(r"(\d+\.\d+\.\d+)"),
    re.compile(r"(\d+\.\d+)"),
    re.compile(r"(\d+)"),
)

DEVICE_TYPE_RULES = (
    ("server", ("windows server", "freebsd", "solaris", "aix", "centos", "rhel")),
    ("network", ("cisco", "juniper", "router", "switch", "firewall", "fortios", "palo alto")),
    ("mobile", ("ios", "android", "mobile")),
    ("iot", ("embedded", "camera", "printer", "iot")),
    ("workstation", ("windows", "mac os", "macos", "ubuntu")),
)


class ScanExecutor(ABC):
    """Performs the probe for one scan request"""

    @abstractmethod
    def execute(self, request: ScanRequest) -> List[Device]:
        """
        Run a scan.

        Returns:
            List[Device]: Normalized devices found by the scan

        Raises:
            ExecutionError: The probe failed
        """


def classify_device_type(os_name: Optional[str]) -> str:
    if not os_name:
        return "unknown"
    name = os_name.lower()
    if "linux" in name and ("server" in name or "debian" in name):
        return "server"
    for device_type, keywords in DEVICE_TYPE_RULES:
        if any(keyword in name for keyword in keywords):
            return device_type
    return "unknown"


def extract_os_version(os_name: Optional[str]) -> Optional[str]:
    if not os_name:
        return None
    for pattern in _VERSION_PATTERNS:
        match = pattern.search(os_name)
        if match:
            return match.group(1)
    return None


def map_port_state(state: str) -> str:
    state = (state or "").lower()
    if state in ("open", "closed"):
        return state
    return "filtered"


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def select_os_match(os_matches: List[Dict]) -> Optional[OSInfo]:
    """Pick the highest-accuracy OS match; ties keep the first one seen"""
    best = None
    best_accuracy = -1
    for match in os_matches or ():
        accuracy = _to_int(match.get("accuracy")) or 0
        if accuracy > best_accuracy:
            best, best_accuracy = match, accuracy

    if best is None:
        return None

    os_class = (best.get("osclass") or [{}])[0]
    name = best.get("name") or None
    return OSInfo(
        name=name,
        version=extract_os_version(name),
        family=os_class.get("osfamily") or None,
        vendor=os_class.get("vendor") or None,
        accuracy=best_accuracy,
    )


def normalize_host(address: str, host_data: Dict, seen_at: Optional[datetime] = None) -> Device:
    """
    Build a Device from one host entry of python-nmap's scan result.

    Args:
        address: Host address as keyed in the result
        host_data: ``scan_result["scan"][address]``
        seen_at: Observation time (default: now, UTC)

    Returns:
        Device: The normalized device
    """
    addresses = host_data.get("addresses", {}) or {}
    mac = addresses.get("mac")
    vendor_map = host_data.get("vendor", {}) or {}
    vendor = vendor_map.get(mac) if mac else None

    hostname = None
    hostnames = [h for h in host_data.get("hostnames", []) or [] if h.get("name")]
    if hostnames:
        ptr = [h for h in hostnames if h.get("type") == "PTR"]
        hostname = (ptr or hostnames)[0]["name"]

    ports = []
    services = []
    for proto in ("tcp", "udp"):
        for number in sorted(host_data.get(proto, {}) or {}):
            info = host_data[proto][number]
            state = map_port_state(info.get("state"))
            name = info.get("name") or None
            if not name and state == "open":
                name = COMMON_SERVICES.get(int(number))

            ports.append(
                Port(
                    number=int(number),
                    protocol=proto,
                    state=state,
                    service_name=name,
                    service_version=info.get("version") or None,
                    confidence=_to_int(info.get("conf")),
                )
            )

            if state == "open" and name:
                services.append(
                    Service(
                        port=int(number),
                        name=name,
                        protocol=proto,
                        product=info.get("product") or None,
                        version=info.get("version") or None,
                        extra_info=info.get("extrainfo") or None,
                        confidence=_to_int(info.get("conf")),
                    )
                )

    os_info = select_os_match(host_data.get("osmatch", []))
    state = (host_data.get("status", {}) or {}).get("state", "up")

    return Device(
        address=addresses.get("ipv4") or addresses.get("ipv6") or address,
        mac=mac.upper() if mac else None,
        hostname=hostname,
        vendor=vendor,
        device_type=classify_device_type(os_info.name if os_info else None),
        ports=ports,
        services=services,
        os_info=os_info,
        is_active=state == "up",
        last_seen=seen_at or datetime.now(timezone.utc),
    )


def nmap_targets(targets) -> str:
    """Render targets for nmap; full-address ranges become CIDR blocks"""
    rendered = []
    for target in targets:
        if "-" in target and "/" not in target:
            start, _, end = target.partition("-")
            networks = ipaddress.summarize_address_range(
                ipaddress.ip_address(start.strip()), ipaddress.ip_address(end.strip())
            )
            rendered.extend(str(network) for network in networks)
        else:
            rendered.append(target)
    return " ".join(rendered)


class NmapScanExecutor(ScanExecutor):
    """Runs scans with the local nmap binary"""

    def __init__(self, sudo: bool = False, extra_arguments: str = ""):
        self.sudo = sudo
        self.extra_arguments = extra_arguments
        self._scanner = None

    @property
    def scanner(self):
        if self._scanner is None:
            try:
                self._scanner = nmap.PortScanner()
            except nmap.PortScannerError as e:
                raise ExecutionError(f"nmap is not available: {e}") from e
        return self._scanner

    def build_arguments(self, request: ScanRequest) -> str:
        arguments = PROFILE_ARGUMENTS[request.profile]
        if self.extra_arguments:
            arguments = f"{arguments} {self.extra_arguments}"
        return arguments

    def execute(self, request: ScanRequest) -> List[Device]:
        hosts = nmap_targets(request.targets)
        arguments = self.build_arguments(request)
        # Host discovery ignores port lists
        ports = request.ports if request.profile != ScanProfile.DISCOVERY else None

        logger.info(f"Scanning targets: {hosts}")
        logger.info(f"Ports: {ports}")
        logger.info(f"Arguments: {arguments}")

        start_time = time.time()
        try:
            result = self.scanner.scan(
                hosts=hosts,
                ports=ports,
                arguments=arguments,
                sudo=self.sudo,
                timeout=int(request.timeout) if request.timeout else 0,
            )
        except nmap.PortScannerTimeout as e:
            raise ExecutionError(
                f"nmap timed out for {request.request_id}: {e}", request.request_id
            ) from e
        except nmap.PortScannerError as e:
            raise ExecutionError(
                f"nmap failed for {request.request_id}: {e}", request.request_id
            ) from e

        errors = result.get("nmap", {}).get("scaninfo", {}).get("error")
        if errors:
            logger.warning(f"nmap reported errors for {request.request_id}: {errors}")

        seen_at = datetime.now(timezone.utc)
        devices = [
            normalize_host(address, host_data, seen_at)
            for address, host_data in result.get("scan", {}).items()
        ]

        logger.info(
            f"Scan {request.request_id} completed in {time.time() - start_time:.2f}s - "
            f"{len(devices)} hosts"
        )
        return devices
