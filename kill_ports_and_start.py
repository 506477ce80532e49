#!/usr/bin/env python3
import os
import sys
import subprocess
import time
import platform
import argparse
import socket

from ecofinds.shared.utils import settings

# --- Colors ---
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

if platform.system() == "Windows":
    os.system('color')  # Enable ANSI colors in Windows terminal

def log(msg, color=Colors.ENDC, bold=False, end="\n"):
    prefix = Colors.BOLD if bold else ""
    print(f"{prefix}{color}{msg}{Colors.ENDC}", end=end, flush=True)

def print_header():
    log("\n" + "═" * 40, Colors.HEADER)
    log("ECOFINDS - PORT CLEANUP & START", Colors.HEADER, bold=True)
    log("═" * 40 + "\n", Colors.HEADER)

# --- Port Management ---

def get_process_on_port(port):
    """Finds the PID of the process listening on the given port."""
    system = platform.system()
    try:
        if system == "Windows":
            cmd = f'netstat -ano | findstr :{port}'
            result = subprocess.run(cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
            if result.returncode == 0 and result.stdout:
                for line in result.stdout.strip().split('\n'):
                    if f":{port}" in line and "LISTENING" in line:
                        return line.strip().split()[-1]  # PID is the last column
        else:
            result = subprocess.run(['lsof', '-t', f'-i:{port}'], stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
            if result.returncode == 0 and result.stdout:
                return result.stdout.strip().split('\n')[0]
    except OSError as e:
        log(f"Error checking port {port}: {e}", Colors.WARNING)
    return None

def kill_process(pid):
    system = platform.system()
    try:
        if system == "Windows":
            subprocess.run(f"taskkill /F /PID {pid}", shell=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            subprocess.run(['kill', '-9', str(pid)], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        return True
    except OSError as e:
        log(f"  └─ Failed to kill PID {pid}: {e}", Colors.FAIL)
        return False

def free_port(port):
    log(f"[1/3] Checking port {port}...", Colors.BLUE, bold=True)
    pid = get_process_on_port(port)
    if not pid:
        log(f"✓ Port {port}: AVAILABLE", Colors.GREEN)
        return
    log(f"✓ Port {port}: IN USE (PID: {pid})", Colors.WARNING)
    log("  └─ Killing process...", Colors.WARNING, end=" ")
    if kill_process(pid):
        log("DONE", Colors.GREEN)
    else:
        log("FAILED", Colors.FAIL)
        log("     Try running as Administrator/sudo", Colors.FAIL)
        sys.exit(1)

# --- API process ---

def start_api(host, port, reload=False):
    log("\n[2/3] Starting EcoFinds API...", Colors.BLUE, bold=True)
    cmd = [sys.executable, "-m", "uvicorn", "ecofinds.main:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    return subprocess.Popen(cmd)

def wait_for_health(process, port, retries=30):
    log("\n[3/3] Verifying API...", Colors.BLUE, bold=True)
    log(f"Checking port {port}...", end=" ")
    for _ in range(retries):
        if process.poll() is not None:
            break
        try:
            with socket.create_connection(("localhost", port), timeout=1):
                log("HEALTHY", Colors.GREEN)
                return True
        except OSError:
            time.sleep(1)
    log("TIMEOUT/FAILED", Colors.FAIL)
    return False

# --- Main ---

def main():
    parser = argparse.ArgumentParser(description="Free the API port and start EcoFinds")
    parser.add_argument("--host", default=settings.API_HOST)
    parser.add_argument("--port", type=int, default=settings.API_PORT)
    parser.add_argument("--reload", action="store_true", help="Restart the server on code changes")
    args = parser.parse_args()

    print_header()
    free_port(args.port)
    process = start_api(args.host, args.port, reload=args.reload)

    if not wait_for_health(process, args.port):
        process.terminate()
        sys.exit(1)

    log("\n" + "═" * 40, Colors.HEADER)
    log("✓ API RUNNING", Colors.GREEN, bold=True)
    log("═" * 40, Colors.HEADER)
    log(f"\n- API:        {Colors.BLUE}http://localhost:{args.port}{Colors.ENDC}")
    log(f"- Swagger UI: {Colors.BLUE}http://localhost:{args.port}/docs{Colors.ENDC}")
    log("\nPress Ctrl+C to stop.", Colors.CYAN)

    try:
        process.wait()
    except KeyboardInterrupt:
        process.terminate()
        process.wait()
        log("\nStopped.", Colors.WARNING)

if __name__ == "__main__":
    main()
