import os
import subprocess
import sys
import time

import requests

# ======================
# Global Config
# ======================

COUCHDB_IMAGE = "couchdb:3"
CONTAINER_NAME = "couchbridge-couchdb"
COUCHDB_USER = "admin"
COUCHDB_PASSWORD = "1234"
PORT = 5984
DATA_DIR = "./data/couchdb"

# ======================
# Utils
# ======================

def run(cmd: list[str]):
    print(">>", " ".join(cmd))
    subprocess.run(cmd, check=True)


def remove_container_if_exists(name: str):
    subprocess.run(
        ["docker", "rm", "-f", name],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


def wait_ready(url: str, timeout: int = 30):
    for _ in range(timeout * 10):
        try:
            r = requests.get(f"{url}/_up", timeout=0.5)
            if r.status_code == 200:
                return
        except requests.RequestException:
            pass
        time.sleep(0.1)
    raise RuntimeError(f"{url} not ready after {timeout}s")


# ======================
# Main Logic
# ======================

def start_couchdb():
    os.makedirs(DATA_DIR, exist_ok=True)
    remove_container_if_exists(CONTAINER_NAME)

    run([
        "docker", "run", "-d",
        "--name", CONTAINER_NAME,
        "-e", f"COUCHDB_USER={COUCHDB_USER}",
        "-e", f"COUCHDB_PASSWORD={COUCHDB_PASSWORD}",
        "-p", f"{PORT}:5984",
        "-v", f"{os.path.abspath(DATA_DIR)}:/opt/couchdb/data",
        COUCHDB_IMAGE,
    ])

    url = f"http://127.0.0.1:{PORT}"
    wait_ready(url)

    # single-node setup needs the system databases
    for name in ("_users", "_replicator"):
        r = requests.put(f"{url}/{name}", auth=(COUCHDB_USER, COUCHDB_PASSWORD), timeout=5)
        if r.status_code not in (201, 202, 412):
            r.raise_for_status()

    print(f"{CONTAINER_NAME} started at {url}")
    print("\nRun the live suite with:")
    print(f"  COUCH_URL={url} COUCH_USERNAME={COUCHDB_USER} COUCH_PASSWORD={COUCHDB_PASSWORD} pytest test/integration")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "down":
        remove_container_if_exists(CONTAINER_NAME)
        print(f"{CONTAINER_NAME} removed")
    else:
        start_couchdb()
