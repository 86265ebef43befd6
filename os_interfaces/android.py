"""Android-specific implementations of OS interfaces."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from jnius import JavaException, PythonJavaClass, autoclass, java_method  # type: ignore

from alarm_schedule.errors import TimerDriverUnavailable
from alarm_schedule.models import TimerHandle, utc_now

from .base import WAKE_ACTION, Clock, HostSurface, TimerDriver

logger = logging.getLogger(__name__)


# --- PyJNIus handles ---
PythonActivity = autoclass("org.kivy.android.PythonActivity")
Intent = autoclass("android.content.Intent")
IntentFilter = autoclass("android.content.IntentFilter")
PendingIntent = autoclass("android.app.PendingIntent")
NotificationManagerJava = autoclass("android.app.NotificationManager")
NotificationChannel = autoclass("android.app.NotificationChannel")
BuildVersion = autoclass("android.os.Build$VERSION")
NotificationCompatBuilder = autoclass("androidx.core.app.NotificationCompat$Builder")
NotificationCompat = autoclass("androidx.core.app.NotificationCompat")
AlarmManagerJava = autoclass("android.app.AlarmManager")
PowerManager = autoclass("android.os.PowerManager")
Settings = autoclass("android.provider.Settings")
AndroidRDrawable = autoclass("android.R$drawable")
Context = autoclass("android.content.Context")

ACTION_ALARM_RING = "com.nightcap.ALARM_RING"
ALARM_CHANNEL_ID = "nightcap-alarm"
ALARM_REQUEST_CODE = 42_001
NOTIFICATION_ID = 999
WAKE_LOCK_TAG = "nightcap:alarm_wake"


def _context():
  return PythonActivity.mActivity.getApplicationContext()


def _flags(base: int | None = None) -> int:
  flag_immutable = PendingIntent.FLAG_IMMUTABLE
  flag_update = PendingIntent.FLAG_UPDATE_CURRENT
  return (base or 0) | flag_immutable | flag_update


def _millis(dt: datetime) -> int:
  return int(dt.timestamp() * 1000)


def _ensure_alarm_channel(manager) -> None:
  if BuildVersion.SDK_INT < 26:
    return
  channel = NotificationChannel(
    ALARM_CHANNEL_ID,
    "Bedtime alarms",
    NotificationManagerJava.IMPORTANCE_HIGH,
  )
  channel.setDescription("Full-screen bedtime reminders")
  channel.setBypassDnd(True)
  channel.setLockscreenVisibility(NotificationCompat.VISIBILITY_PUBLIC)
  manager.createNotificationChannel(channel)


class _AlarmRingReceiver(PythonJavaClass):
  __javainterfaces__ = ["android/content/BroadcastReceiver"]
  __javacontext__ = "app"

  def __init__(self, on_ring: Callable[[str], None]):
    super().__init__()
    self.on_ring = on_ring

  @java_method("(Landroid/content/Context;Landroid/content/Intent;)V")
  def onReceive(self, _context, intent):
    action = intent.getAction()
    logger.info(f"Alarm broadcast received: {action}")

    def run():
      try:
        self.on_ring(WAKE_ACTION if action == ACTION_ALARM_RING else str(action))
      except Exception:
        logger.exception("Alarm wake handler failed")

    # onReceive runs on the main looper; never block it
    threading.Thread(target=run, daemon=True, name="alarm-wake").start()


class AndroidTimerDriver(TimerDriver):
  """AlarmManager-backed wake timer.

  A single fixed request code means re-arming replaces the pending alarm and
  cancelling works even for an alarm armed by a previous process.
  """

  def __init__(self, clock: Clock = utc_now):
    super().__init__(clock=clock)
    self.ctx = _context()
    self.alarm_manager = self.ctx.getSystemService(Context.ALARM_SERVICE)
    self._receiver: Optional[_AlarmRingReceiver] = None

  def _pending_intent(self):
    intent = Intent(ACTION_ALARM_RING)
    intent.setPackage(self.ctx.getPackageName())
    return PendingIntent.getBroadcast(self.ctx, ALARM_REQUEST_CODE, intent, _flags())

  def on_wake(self, callback) -> None:
    super().on_wake(callback)
    if callback is not None:
      self.register_receiver()
    else:
      self.unregister_receiver()

  def register_receiver(self) -> None:
    if self._receiver is not None:
      return
    self._receiver = _AlarmRingReceiver(self.dispatch_wake)
    intent_filter = IntentFilter()
    intent_filter.addAction(ACTION_ALARM_RING)
    if BuildVersion.SDK_INT >= 33:
      self.ctx.registerReceiver(self._receiver, intent_filter, Context.RECEIVER_NOT_EXPORTED)
    else:
      self.ctx.registerReceiver(self._receiver, intent_filter)
    logger.info("Alarm receiver registered")

  def unregister_receiver(self) -> None:
    if self._receiver is None:
      return
    self.ctx.unregisterReceiver(self._receiver)
    self._receiver = None
    logger.info("Alarm receiver unregistered")

  def _arm(self, instant: datetime) -> TimerHandle:
    try:
      pending_intent = self._pending_intent()
      if BuildVersion.SDK_INT >= 23:
        self.alarm_manager.setExactAndAllowWhileIdle(
          AlarmManagerJava.RTC_WAKEUP, _millis(instant), pending_intent
        )
      else:
        self.alarm_manager.setExact(
          AlarmManagerJava.RTC_WAKEUP, _millis(instant), pending_intent
        )
    except JavaException as e:
      raise TimerDriverUnavailable(f"AlarmManager refused alarm: {e}", e) from e

    timer_id = f"alarm-{ALARM_REQUEST_CODE}"
    logger.info(f"Scheduled alarm {timer_id} at {instant.isoformat()}")
    return TimerHandle(timer_id=timer_id, instant=instant)

  def cancel(self, handle: TimerHandle) -> None:
    self.cancel_all()

  def cancel_all(self) -> None:
    try:
      self.alarm_manager.cancel(self._pending_intent())
    except JavaException as e:
      raise TimerDriverUnavailable(f"AlarmManager cancel failed: {e}", e) from e
    logger.info(f"Cancelled alarm-{ALARM_REQUEST_CODE}")


class AndroidHostSurface(HostSurface):
  """Screen wake, activity launch and full-screen notification via PyJNIus"""

  def __init__(self):
    self.ctx = _context()
    self.power_manager = self.ctx.getSystemService(Context.POWER_SERVICE)
    self.notification_manager = self.ctx.getSystemService(Context.NOTIFICATION_SERVICE)
    _ensure_alarm_channel(self.notification_manager)

  def wake_screen(self, seconds: int) -> bool:
    try:
      wake_lock = self.power_manager.newWakeLock(
        PowerManager.FULL_WAKE_LOCK
        | PowerManager.ACQUIRE_CAUSES_WAKEUP
        | PowerManager.ON_AFTER_RELEASE,
        WAKE_LOCK_TAG,
      )
      wake_lock.acquire(seconds * 1000)
    except JavaException as e:
      logger.error(f"Failed to wake screen: {e}")
      return False
    logger.debug(f"Screen wake lock acquired for {seconds}s")
    return True

  def can_reach_foreground(self) -> bool:
    # Android 10+ blocks background activity starts unless the app may
    # draw overlays; a visible activity can always reorder itself.
    if BuildVersion.SDK_INT < 29:
      return True
    activity = PythonActivity.mActivity
    if activity is not None and activity.hasWindowFocus():
      return True
    return bool(Settings.canDrawOverlays(self.ctx))

  def _launch_intent(self, extras: Dict[str, Any], flags: int):
    intent = Intent(self.ctx, PythonActivity)
    intent.setFlags(flags)
    for key, value in extras.items():
      intent.putExtra(key, value if isinstance(value, bool) else str(value))
    return intent

  def bring_to_foreground(self, extras: Dict[str, Any]) -> None:
    intent = self._launch_intent(
      extras,
      Intent.FLAG_ACTIVITY_NEW_TASK
      | Intent.FLAG_ACTIVITY_CLEAR_TOP
      | Intent.FLAG_ACTIVITY_SINGLE_TOP
      | Intent.FLAG_ACTIVITY_REORDER_TO_FRONT,
    )
    self.ctx.startActivity(intent)
    logger.info("Main activity launch intent sent")

  async def show_alarm_notification(
    self, title: str, body: str, extras: Dict[str, Any]
  ) -> None:
    intent = self._launch_intent(
      extras, Intent.FLAG_ACTIVITY_NEW_TASK | Intent.FLAG_ACTIVITY_CLEAR_TOP
    )
    full_screen_pi = PendingIntent.getActivity(self.ctx, NOTIFICATION_ID, intent, _flags())

    builder = (
      NotificationCompatBuilder(self.ctx, ALARM_CHANNEL_ID)
      .setSmallIcon(AndroidRDrawable.ic_lock_idle_alarm)
      .setContentTitle(title)
      .setContentText(body)
      .setPriority(NotificationCompat.PRIORITY_MAX)
      .setCategory(NotificationCompat.CATEGORY_ALARM)
      .setVisibility(NotificationCompat.VISIBILITY_PUBLIC)
      .setFullScreenIntent(full_screen_pi, True)
      .setContentIntent(full_screen_pi)
      .setAutoCancel(True)
    )

    self.notification_manager.notify(NOTIFICATION_ID, builder.build())
    logger.info("Full-screen alarm notification shown")
