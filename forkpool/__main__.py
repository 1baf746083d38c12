"""
`python -m forkpool` – atajo a la CLI basada en Typer.

Comandos:
  run    – ejecuta comandos en un pool y muestra los resultados
  serve  – arranca la API REST delante de un pool
"""
from .cli import cli

if __name__ == "__main__":
    cli()
