#!/usr/bin/env python3
"""
Ticket Printer - print job API for receipt/ticket printers
Accepts finished ticket payloads over HTTP and delivers them to OS printers
"""

import os

from ticket_printer import create_app

app = create_app()


if __name__ == '__main__':
    host = os.environ.get('TICKETPRINTER_HOST', '0.0.0.0')
    port = int(os.environ.get('TICKETPRINTER_PORT', 5000))
    app.logger.info(f"Starting Ticket Printer on http://{host}:{port}")
    app.logger.info("Press Ctrl+C to stop the server")
    app.run(host=host, port=port, debug=False)
