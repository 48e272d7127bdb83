"""
presenter - Device-side alarm presentation.

Sub-modules:
    alarm_presenter - Idle → Alerting → Stopping → Idle state machine
    session         - the single live AlarmSession + state/result enums
    device          - ports to OS audio, playback, notifications, foreground
"""
