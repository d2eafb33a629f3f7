import logging
import threading
from typing import Callable, Optional

from focus_schema import DistractionAlert

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 250
BG = "#0a0a15"
CARD_BG = "#16213e"
ACCENT = "#4a9eff"

FeedbackHandler = Callable[[DistractionAlert, bool], None]


class AlertWindow:
    """
    Single distraction popup shared by every alert.

    show_or_update() may be called from the capture thread as often as it likes:
    while a window is open the newest alert is rendered into it in place,
    otherwise a new window is opened on its own UI thread.
    """

    def __init__(self, on_feedback: Optional[FeedbackHandler] = None) -> None:
        self.on_feedback = on_feedback
        self._lock = threading.Lock()
        self._pending: Optional[DistractionAlert] = None
        self._thread: Optional[threading.Thread] = None

    def show_or_update(self, alert: DistractionAlert) -> None:
        with self._lock:
            self._pending = alert
            if self._thread and self._thread.is_alive():
                return
            self._start_ui_thread()

    def is_open(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def _start_ui_thread(self) -> None:
        self._thread = threading.Thread(target=self._run, name="FocusGuardAlert", daemon=True)
        self._thread.start()

    def _take_pending(self) -> Optional[DistractionAlert]:
        with self._lock:
            alert, self._pending = self._pending, None
            return alert

    def _run(self) -> None:
        import tkinter as tk

        try:
            root = tk.Tk()
            DistractionPopup(root, self._take_pending, self._handle_feedback)
            root.mainloop()
        except tk.TclError as exc:
            logger.warning("Could not open FocusGuard alert window: %s", exc)
            self._take_pending()
        finally:
            with self._lock:
                # An alert that arrived while the window was closing still gets shown.
                if self._pending is not None:
                    self._start_ui_thread()

    def _handle_feedback(self, alert: DistractionAlert, liked: bool) -> None:
        if not self.on_feedback:
            return
        try:
            self.on_feedback(alert, liked)
        except Exception as exc:
            logger.exception("Failed to record alert feedback for screenshot %s: %s", alert.screenshot_id, exc)


class DistractionPopup:
    def __init__(
        self,
        master,
        take_pending: Callable[[], Optional[DistractionAlert]],
        on_feedback: FeedbackHandler,
    ) -> None:
        import tkinter as tk

        self.master = master
        self.take_pending = take_pending
        self.on_feedback = on_feedback
        self.alert: Optional[DistractionAlert] = None

        self.master.title("FocusGuard")
        self.master.attributes("-topmost", True)
        self.master.configure(bg=BG)
        self.master.resizable(False, False)

        window_width, window_height = 560, 420
        x = (self.master.winfo_screenwidth() - window_width) // 2
        y = (self.master.winfo_screenheight() - window_height) // 2
        self.master.geometry(f"{window_width}x{window_height}+{x}+{y}")

        container = tk.Frame(master, bg=BG)
        container.pack(expand=True, fill=tk.BOTH, padx=30, pady=30)

        tk.Label(container, text="⚡ FocusGuard", font=("Arial", 28, "bold"), fg=ACCENT, bg=BG).pack()

        self.score_label = tk.Label(container, text="", font=("Arial", 18), fg="#ef4444", bg=BG)
        self.score_label.pack(pady=(15, 5))

        self.job_label = tk.Label(container, text="", font=("Arial", 12), fg="#9ca3af", bg=BG, wraplength=480)
        self.job_label.pack()

        card = tk.Frame(container, bg=CARD_BG)
        card.pack(fill=tk.BOTH, expand=True, pady=20)
        self.response_label = tk.Label(
            card,
            text="",
            font=("Arial", 13, "italic"),
            fg="#d1d5db",
            bg=CARD_BG,
            wraplength=460,
            justify=tk.LEFT,
            padx=15,
        )
        self.response_label.pack(pady=15)

        buttons = tk.Frame(container, bg=BG)
        buttons.pack(side=tk.BOTTOM, fill=tk.X)
        tk.Label(buttons, text="Was this alert right?", font=("Arial", 12), fg="#d1d5db", bg=BG).pack(side=tk.LEFT)
        tk.Button(buttons, text="👎", font=("Arial", 16), command=lambda: self.rate(False)).pack(side=tk.RIGHT, padx=5)
        tk.Button(buttons, text="👍", font=("Arial", 16), command=lambda: self.rate(True)).pack(side=tk.RIGHT, padx=5)

        self.master.bind("<Escape>", lambda e: self.close())
        self.poll()

    def poll(self) -> None:
        alert = self.take_pending()
        if alert is not None:
            self.render(alert)
        self.master.after(POLL_INTERVAL_MS, self.poll)

    def render(self, alert: DistractionAlert) -> None:
        self.alert = alert
        self.score_label.config(text=f"Productivity score: {alert.productivity_score}/10")
        self.job_label.config(text=f"{alert.job_title}: {alert.job_role}")
        self.response_label.config(text=alert.raw_response or "You look distracted.")
        self.master.deiconify()
        self.master.lift()

    def rate(self, liked: bool) -> None:
        if self.alert is not None:
            self.on_feedback(self.alert, liked)
        self.close()

    def close(self) -> None:
        self.master.quit()
        self.master.destroy()
