"""Update-job proxy runner."""
