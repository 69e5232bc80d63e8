"""Order desk: fulfillment and refund workflow for the storefront admin console."""
