"""
Conversion programs run in a separate interpreter by the PDF-to-office
operations, so that heavy converter libraries never load into the server.

Each module is invoked as ``python -m pdf_tools_backend.scripts.<name> <in> <out>``
and exits with status 1 and a message on stderr when the conversion fails.
"""
