from complianceprobe.cli import app

app()
