"""Comanda POS services; each one lives in `apps/<name>/app`."""
