"""Command-line interface for Tableback - HTTP client for the server API."""

import logging
import shlex
import sys

import httpx

from tableback.config import get_config, setup_logging

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  state                              Show reservations and waitlist
  reserve NAME PHONE PARTY HH:MM     Add a reservation
  wait NAME PHONE PARTY              Add a guest to the waitlist
  contact WAITLIST_ID                Offer an open table to a waitlist guest
  remove-reservation ID              Delete a reservation
  remove-waitlist ID                 Take a guest off the waitlist
  notifications                      Show recent notifications
  help                               Show this help
  quit                               Exit"""


class TablebackCLI:
    """Command-line interface for staff - HTTP client."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        """Initialize the CLI.

        Args:
            client: HTTP client to use (one pointing at the configured server if omitted)
        """
        self.config = get_config()
        setup_logging(self.config)
        self.client = client or httpx.Client(base_url=self.config.server_url, timeout=30.0)
        logger.info(f"Tableback CLI talking to {self.config.server_url}")

    def run(self) -> None:
        """Run the interactive loop."""
        print("\n" + "=" * 60)
        print("TABLEBACK - Reservation & Waitlist Automation")
        print("=" * 60 + "\n")
        print(HELP_TEXT)

        while True:
            try:
                line = input("\ntableback> ").strip()
                if not line:
                    continue
                if line.lower() in ["quit", "exit", "q"]:
                    print("\nGoodbye!")
                    break
                self.execute(line)
            except KeyboardInterrupt:
                print("\n\nExiting Tableback. Goodbye!")
                break
            except Exception as e:
                logger.error(f"Unexpected error: {e}", exc_info=True)
                print(f"\n⚠ An unexpected error occurred: {e}")
                print("Please try again or type 'quit' to exit.")

    def execute(self, line: str) -> None:
        """Run a single command line against the server."""
        try:
            command, *args = shlex.split(line)
        except ValueError as e:
            print(f"⚠ Could not parse command: {e}")
            return

        handlers = {
            "state": self._show_state,
            "reserve": self._reserve,
            "wait": self._wait,
            "contact": self._contact,
            "remove-reservation": self._remove_reservation,
            "remove-waitlist": self._remove_waitlist,
            "notifications": self._show_notifications,
        }
        handler = handlers.get(command.lower())
        if handler is None:
            print(HELP_TEXT)
            return

        try:
            handler(args)
        except (TypeError, ValueError):
            print(f"⚠ Invalid arguments for '{command}'. Type 'help' for usage.")
        except httpx.TimeoutException:
            logger.exception("Request timed out")
            print("\n⚠ Request timed out. Please try again.")
        except httpx.ConnectError:
            logger.exception("Cannot connect to server")
            print(f"\n⚠ Cannot connect to server at {self.config.server_url}")
            print("Make sure the server is running:")
            print("  python -m tableback.server")
        except httpx.HTTPStatusError as e:
            print(
                f"\n⚠ Server error (status {e.response.status_code}): "
                f"{self._error_detail(e.response)}"
            )
        except Exception as e:
            logger.error(f"Error processing command: {e}", exc_info=True)
            print(f"\n⚠ Error processing command: {e}")

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        if response.headers.get("content-type", "").startswith("application/json"):
            return str(response.json().get("detail", response.text))
        return response.text

    def _request(self, method: str, path: str, **kwargs) -> dict | list:
        response = self.client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    def _show_state(self, _args: list[str]) -> None:
        state = self._request("GET", "/state")
        print("\nReservations:")
        for r in state["reservations"]:
            filled = f" (was {r['original_guest_name']})" if r["filled_from_waitlist"] else ""
            print(
                f"  {r['id'][:8]}  {r['time']:>5}  {r['party_size']}p  "
                f"{r['status']:<10}  {r['name']}{filled}  reminders={r['reminder_count']}"
            )
        print("\nWaitlist:")
        for w in state["waitlist"]:
            print(f"  {w['id'][:8]}  {w['party_size']}p  {w['status']:<9}  {w['name']}")

    def _reserve(self, args: list[str]) -> None:
        name, phone, party_size, time = args
        reservation = self._request(
            "POST",
            "/reservations",
            json={"name": name, "phone": phone, "party_size": int(party_size), "time": time},
        )
        print(f"✓ Reservation {reservation['id']} added")

    def _wait(self, args: list[str]) -> None:
        name, phone, party_size = args
        entry = self._request(
            "POST",
            "/waitlist",
            json={"name": name, "phone": phone, "party_size": int(party_size)},
        )
        print(f"✓ Waitlist entry {entry['id']} added")

    def _contact(self, args: list[str]) -> None:
        (entry_id,) = args
        result = self._request("POST", f"/waitlist/{self._resolve('waitlist', entry_id)}/contact")
        if result["offered"]:
            print(f"✓ Offered table {result['reservation']['id']}")
        else:
            print("No open table available")

    def _remove_reservation(self, args: list[str]) -> None:
        (reservation_id,) = args
        self._request("DELETE", f"/reservations/{self._resolve('reservations', reservation_id)}")
        print("✓ Reservation removed")

    def _remove_waitlist(self, args: list[str]) -> None:
        (entry_id,) = args
        self._request("DELETE", f"/waitlist/{self._resolve('waitlist', entry_id)}")
        print("✓ Waitlist entry removed")

    def _show_notifications(self, _args: list[str]) -> None:
        for notification in self._request("GET", "/notifications"):
            marker = "⚠" if notification["level"] == "error" else "•"
            print(f"  {marker} {notification['message']}")

    def _resolve(self, collection: str, prefix: str) -> str:
        """Expand a shortened id as printed by ``state``."""
        state = self._request("GET", "/state")
        matches = [item["id"] for item in state[collection] if item["id"].startswith(prefix)]
        return matches[0] if len(matches) == 1 else prefix


def main() -> None:
    """Main entry point for the CLI."""
    try:
        get_config()
    except Exception as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    cli = TablebackCLI()
    cli.run()


if __name__ == "__main__":
    main()
