#!/usr/bin/env python3
"""Interactive front desk CLI for exercising the ClinicFlow service."""

import shlex
import sys

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

VISIT_STEPS = {
    "/wait": "waiting",
    "/call": "called",
    "/seat": "seated",
    "/treat": "in_treatment",
    "/checkout": "checkout",
    "/depart": "departed",
    "/lwbs": "left_without_being_seen",
}


class FrontDeskCLI:
    """Interactive front desk console for one clinic."""

    def __init__(self, base_url: str = "http://localhost:8000", clinic_id: str = "demo-clinic"):
        self.base_url = base_url
        self.clinic_id = clinic_id
        self.console = Console()
        self.client = httpx.Client(base_url=base_url, headers={"X-Clinic-Id": clinic_id}, timeout=30.0)

    def start(self) -> None:
        """Start the interactive session."""
        self.console.print(
            Panel.fit(
                f"[bold blue]🏥 ClinicFlow Front Desk - {self.clinic_id}[/bold blue]\n"
                "Commands: /queue, /alerts, /slots, /book, /confirm, /checkin, /cancel, /walkin, /help, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected to ClinicFlow[/green]\n")

        try:
            while True:
                line = Prompt.ask("\n[bold cyan]desk[/bold cyan]")
                if not line.strip():
                    continue
                try:
                    command, *args = shlex.split(line)
                except ValueError as e:
                    self.console.print(f"[red]❌ {e}[/red]")
                    continue

                if command in ["/quit", "/exit", "quit", "exit"]:
                    break
                self._dispatch(command.lower(), args)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _dispatch(self, command: str, args: list[str]) -> None:
        if command == "/help":
            self._show_help()
        elif command == "/queue":
            self._show_queue(args[0] if args else "main")
        elif command == "/alerts":
            self._show_alerts()
        elif command == "/slots" and len(args) == 3:
            self._show_slots(*args)
        elif command == "/book" and len(args) == 4:
            patient_id, provider_id, appointment_type_id, start = args
            payload = {
                "patient_id": patient_id,
                "provider_id": provider_id,
                "appointment_type_id": appointment_type_id,
                "start": start,
            }
            self._report(self._request("POST", "/appointments", json=payload))
        elif command == "/confirm" and len(args) == 1:
            self._transition_appointment(args[0], "confirmed")
        elif command == "/checkin" and len(args) == 1:
            self._transition_appointment(args[0], "checked_in")
        elif command == "/cancel" and len(args) >= 2:
            self._transition_appointment(args[0], "cancelled", reason=" ".join(args[1:]))
        elif command == "/move" and len(args) == 2:
            path = f"/appointments/{args[0]}/reschedule"
            self._report(self._request("POST", path, json={"start": args[1]}))
        elif command == "/walkin" and len(args) >= 1:
            payload = {"patient_id": args[0], "emergency": "emergency" in args[1:]}
            self._report(self._request("POST", "/visits", json=payload))
        elif command in VISIT_STEPS and len(args) == 1:
            self._report(self._request("POST", f"/visits/{args[0]}/transition", json={"state": VISIT_STEPS[command]}))
        else:
            self.console.print("[yellow]Unknown command or wrong arguments, try /help[/yellow]")

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _request(self, method: str, path: str, **kwargs) -> dict | list | None:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return None

        if response.status_code in (200, 201):
            return response.json()

        detail = response.json().get("detail") if response.headers.get("content-type") == "application/json" else None
        if isinstance(detail, dict):
            self.console.print(f"[red]❌ {detail.get('code')}: {detail.get('message')}[/red]")
        else:
            self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
        return None

    def _transition_appointment(self, appointment_id: str, status: str, reason: str | None = None) -> None:
        payload = {"status": status, "reason": reason}
        self._report(self._request("POST", f"/appointments/{appointment_id}/transition", json=payload))

    def _report(self, data: dict | list | None) -> None:
        if data is not None:
            self.console.print(Panel(str(data), title="[bold green]✅ Done[/bold green]", border_style="green"))

    def _show_queue(self, location_id: str) -> None:
        data = self._request("GET", "/queue", params={"location_id": location_id})
        if not isinstance(data, dict):
            return

        table = Table(title=f"Queue at {location_id}")
        table.add_column("Ticket", justify="right")
        table.add_column("Patient")
        table.add_column("State")
        table.add_column("Visit")
        for visit in data["visits"]:
            patient = f"🚨 {visit['patient_id']}" if visit["emergency"] else visit["patient_id"]
            table.add_row(str(visit["ticket_number"]), patient, visit["state"], visit["id"])
        self.console.print(table)

        summary = data["summary"]
        self.console.print(
            f"[dim]{summary['waiting']} waiting, longest {summary['longest_wait_minutes']} min, "
            f"average {summary['average_wait_minutes']} min[/dim]"
        )

    def _show_alerts(self) -> None:
        alerts = self._request("GET", "/visits/alerts")
        if not alerts:
            self.console.print("[green]No wait-time alerts[/green]")
            return
        for alert in alerts:
            self.console.print(
                f"[red]⏰ {alert['patient_id']} {alert['state']} for {alert['minutes_in_state']} min "
                f"(limit {alert['threshold_minutes']})[/red]"
            )

    def _show_slots(self, provider_id: str, appointment_type_id: str, day: str) -> None:
        params = {"provider_id": provider_id, "appointment_type_id": appointment_type_id, "from": day, "to": day}
        data = self._request("GET", "/calendar", params=params)
        if not isinstance(data, dict):
            return

        table = Table(title=f"{provider_id} on {day}")
        table.add_column("Open slot")
        for slot in data["open_slots"]:
            table.add_row(f"{slot['start']} - {slot['end']}")
        self.console.print(table)

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /queue [location] - Show the live queue
• /alerts - Show wait-time alerts
• /slots PROVIDER TYPE YYYY-MM-DD - Show open slots
• /book PATIENT PROVIDER TYPE START - Book (START in ISO 8601 with offset)
• /confirm APPT, /checkin APPT, /cancel APPT REASON
• /move APPT START - Reschedule to a new start
• /walkin PATIENT [emergency] - Register a walk-in
• /wait, /call, /seat, /treat, /checkout, /depart, /lwbs VISIT - Move a visit
• /quit or /exit - Exit

[bold]Demo data:[/bold]
Start the service with CLINICFLOW_LOAD_DEMO_DATA=true for clinic "demo-clinic",
providers dr-lee and hyg-ortiz, types cleaning, checkup, bitewing-xray, panoramic-xray.
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the front desk CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    clinic_id = sys.argv[2] if len(sys.argv) > 2 else "demo-clinic"

    FrontDeskCLI(base_url, clinic_id).start()


if __name__ == "__main__":
    main()
