"""
 * Basic functionality around loading the fhir hosts file, printing an example
 * when the file doesn't exist, and turning a host entry into a requests
 * session
"""
import sys
from pathlib import Path
from yaml import safe_load
import requests

_default_hosts_file = "fhir_hosts"

auth_types = {
    "none": "No authentication",
    "basic": "HTTP basic authentication (username, password)",
    "token": "Bearer token (token)",
}

def example_config(writer, auth_type=None):
    """Writes an example configuration for one or all supported auth types"""
    print(
        f"""# Example Hosts Configuration.
#
# This is a basic yaml file (yaml.org) where each root level tag represents a
# system "name" and it's children's keys represent key/values to assign to a
# host configuration which includes the authentication details.
#
# All host entries should have the following key/values:
# host_desc             - This is just a short description which can be used
#                         for log names or whatnot
# target_service_url    - This is the URL associated with the actual API
# auth_type             - One of: {', '.join(auth_types.keys())}
#
# Please note that there can be multiple hosts that use the same authentication
# mechanism. Users must ensure that each host has a unique "key" """,
        file=writer,
    )
    for key, desc in auth_types.items():
        if auth_type is None or auth_type == key:
            print(f"""
# {desc}
example-{key}:
  host_desc: Example {key}
  target_service_url: https://example.fhir.server/R4/fhir
  auth_type: {key}""", file=writer)
            if key == "basic":
                print("  username: USERNAME\n  password: PASSWORD", file=writer)
            elif key == "token":
                print("  token: TOKEN", file=writer)

def load_hosts_file(filename=None):
    if filename is None:
        filename = _default_hosts_file
    host_config_filename = Path(filename)

    if not host_config_filename.is_file() or host_config_filename.stat().st_size == 0:
        example_config(sys.stdout)
        sys.stderr.write(
            f"""
A valid host configuration file, {filename}, must exist and was not
found. Example configuration has been written to stout providing examples
for each of the auth types currently supported.\n"""
        )
        sys.exit(1)

    with host_config_filename.open("rt") as f:
        host_config = safe_load(f)

    return host_config

def service_url(host):
    """Target url for a host entry, always ending with a single /"""
    return host["target_service_url"].rstrip("/") + "/"

def build_session(host):
    session = requests.Session()
    session.headers.update({"Accept": "application/fhir+json"})

    auth_type = host.get("auth_type", "none")
    if auth_type == "basic":
        session.auth = (host["username"], host["password"])
    elif auth_type == "token":
        session.headers.update({"Authorization": f"Bearer {host['token']}"})

    return session
