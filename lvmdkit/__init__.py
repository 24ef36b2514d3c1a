"""LVM volume management: lvm runner and reports, volumes, device classes, LV service and admission hooks."""

__version__ = "0.1.0"