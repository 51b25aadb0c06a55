"""Motor predictivo de vida útil restante (RUL) de baterías."""
